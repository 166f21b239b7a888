"""Language code normalization.

Subtitle, audio and transcription-service language tags arrive in several
shapes: ISO 639-1 ("en"), ISO 639-2 bibliographic ("ger") or terminological
("deu") codes, and plain English names ("English"). Everything inside the
processor keys languages by the canonical ISO 639-1 code, so this module maps
all of them to that one form.
"""

import logging

logger = logging.getLogger(__name__)

# Canonical ISO 639-1 code -> (English name, ISO 639-2 codes...)
# The first three-letter code is the bibliographic form; any further codes are
# terminological or legacy aliases that resolve to the same language.
_LANGUAGES: dict[str, tuple[str, ...]] = {
    "af": ("Afrikaans", "afr"),
    "am": ("Amharic", "amh"),
    "ar": ("Arabic", "ara"),
    "bg": ("Bulgarian", "bul"),
    "bn": ("Bengali", "ben"),
    "bs": ("Bosnian", "bos"),
    "ca": ("Catalan", "cat"),
    "cs": ("Czech", "cze", "ces"),
    "cy": ("Welsh", "wel", "cym"),
    "da": ("Danish", "dan"),
    "de": ("German", "ger", "deu"),
    "el": ("Greek", "gre", "ell"),
    "en": ("English", "eng"),
    "eo": ("Esperanto", "epo"),
    "es": ("Spanish", "spa"),
    "et": ("Estonian", "est"),
    "eu": ("Basque", "baq", "eus"),
    "fa": ("Persian", "per", "fas"),
    "fi": ("Finnish", "fin"),
    "fr": ("French", "fre", "fra"),
    "ga": ("Irish", "gle"),
    "gl": ("Galician", "glg"),
    "gu": ("Gujarati", "guj"),
    "he": ("Hebrew", "heb"),
    "hi": ("Hindi", "hin"),
    "hr": ("Croatian", "hrv", "scr"),
    "hu": ("Hungarian", "hun"),
    "hy": ("Armenian", "arm", "hye"),
    "id": ("Indonesian", "ind"),
    "is": ("Icelandic", "ice", "isl"),
    "it": ("Italian", "ita"),
    "ja": ("Japanese", "jpn"),
    "ka": ("Georgian", "geo", "kat"),
    "km": ("Khmer", "khm"),
    "kn": ("Kannada", "kan"),
    "ko": ("Korean", "kor"),
    "ku": ("Kurdish", "kur"),
    "la": ("Latin", "lat"),
    "lb": ("Luxembourgish", "ltz"),
    "lo": ("Lao", "lao"),
    "lt": ("Lithuanian", "lit"),
    "lv": ("Latvian", "lav"),
    "mk": ("Macedonian", "mac", "mkd"),
    "ml": ("Malayalam", "mal"),
    "mr": ("Marathi", "mar"),
    "ms": ("Malay", "may", "msa"),
    "mt": ("Maltese", "mlt"),
    "my": ("Burmese", "bur", "mya"),
    "ne": ("Nepali", "nep"),
    "nl": ("Dutch", "dut", "nld"),
    "no": ("Norwegian", "nor", "nob", "nno"),
    "pl": ("Polish", "pol"),
    "ps": ("Pashto", "pus"),
    "pt": ("Portuguese", "por"),
    "ro": ("Romanian", "rum", "ron"),
    "ru": ("Russian", "rus"),
    "si": ("Sinhala", "sin"),
    "sk": ("Slovak", "slo", "slk"),
    "sl": ("Slovenian", "slv"),
    "sq": ("Albanian", "alb", "sqi"),
    "sr": ("Serbian", "srp", "scc"),
    "sv": ("Swedish", "swe"),
    "sw": ("Swahili", "swa"),
    "ta": ("Tamil", "tam"),
    "te": ("Telugu", "tel"),
    "th": ("Thai", "tha"),
    "tl": ("Tagalog", "tgl"),
    "tr": ("Turkish", "tur"),
    "uk": ("Ukrainian", "ukr"),
    "ur": ("Urdu", "urd"),
    "vi": ("Vietnamese", "vie"),
    "zh": ("Chinese", "chi", "zho"),
}

# Names that differ from the table's primary English name
_NAME_ALIASES: dict[str, str] = {
    "castilian": "es",
    "farsi": "fa",
    "filipino": "tl",
    "flemish": "nl",
    "mandarin": "zh",
    "moldavian": "ro",
    "norwegian bokmal": "no",
    "norwegian bokmål": "no",
    "norwegian nynorsk": "no",
    "sinhalese": "si",
    "slovene": "sl",
}

_UNDETERMINED: frozenset[str] = frozenset({"", "und", "undetermined", "unknown"})

_THREE_LETTER_TO_CANONICAL: dict[str, str] = {
    alias: code for code, entry in _LANGUAGES.items() for alias in entry[1:]
}
_NAME_TO_CANONICAL: dict[str, str] = {
    entry[0].lower(): code for code, entry in _LANGUAGES.items()
} | _NAME_ALIASES


def normalize_language(tag: str | None) -> str | None:
    """Map a free-form language tag to its canonical ISO 639-1 code.

    Args:
        tag: Language tag as found in a container, returned by a service or
            written in configuration. Case and surrounding whitespace are
            ignored.

    Returns:
        Two-letter canonical code, or None when the tag is empty,
        undetermined or unrecognized.

    Examples:
        >>> normalize_language("eng")
        'en'
        >>> normalize_language("English")
        'en'
        >>> normalize_language("en")
        'en'
        >>> normalize_language("und") is None
        True
    """
    if tag is None:
        return None

    value = tag.strip().lower()
    if value in _UNDETERMINED:
        return None

    # Region subtags ("en-US", "pt_BR") carry no meaning for subtitle keying
    for separator in ("-", "_"):
        if separator in value:
            value = value.split(separator, 1)[0]

    if len(value) == 2 and value.isalpha():
        return value

    if len(value) == 3 and value in _THREE_LETTER_TO_CANONICAL:
        return _THREE_LETTER_TO_CANONICAL[value]

    canonical = _NAME_TO_CANONICAL.get(value)
    if canonical is None:
        logger.debug("Unrecognized language tag: %r", tag)
    return canonical


def is_canonical(code: str | None) -> bool:
    """Return True if code is already a canonical two-letter code."""
    return code is not None and normalize_language(code) == code


def language_name(code: str | None) -> str:
    """Return the English name for a language, for log and prompt text.

    Unknown codes are returned unchanged so that callers always get
    something printable.
    """
    canonical = normalize_language(code)
    if canonical is None:
        return code or "Unknown"
    entry = _LANGUAGES.get(canonical)
    return entry[0] if entry else canonical
