"""
Sahayak v1.0 — TTS Text Cleaner
Turns formulas, symbols and chat formatting into words a voice can say.

    "F = ma"        → "F equals ma"
    "E = mc²"       → "E equals m c squared"
    "v = 9.8 m/s^2" → "v equals 9.8 m per s to the power 2"
    "H₂O"           → "H two O"

Pure functions, stdlib only.
"""

import re

_GREEK = {
    "α": "alpha", "β": "beta", "γ": "gamma", "δ": "delta", "Δ": "delta",
    "θ": "theta", "λ": "lambda", "μ": "mu", "π": "pi", "σ": "sigma",
    "Σ": "sigma", "ω": "omega", "Ω": "ohm", "ρ": "rho", "φ": "phi",
}

_SUBSCRIPTS = {"₀": "zero", "₁": "one", "₂": "two", "₃": "three", "₄": "four",
               "₅": "five", "₆": "six", "₇": "seven", "₈": "eight", "₉": "nine"}

_SYMBOLS = {
    "≈": " approximately equals ",
    "≠": " not equal to ",
    "≤": " less than or equal to ",
    "≥": " greater than or equal to ",
    "∞": " infinity ",
    "√": " square root of ",
    "∛": " cube root of ",
    "×": " times ",
    "÷": " divided by ",
    "−": " minus ",
    "→": " gives ",
    "∝": " is proportional to ",
    "°": " degrees ",
}

# Applied in order
_RULES = [
    # Markdown noise from chat-style answers
    (re.compile(r"\*\*|__|`+|#{1,6}\s*"), ""),
    (re.compile(r"(^|\n)\s*[-*•]\s+"), r"\1"),
    # Units per: m/s → m per s (before general fractions)
    (re.compile(r"\b([a-zA-Z]{1,3})\s*/\s*([a-zA-Z]{1,3})\b"), r"\1 per \2"),
    # Fractions
    (re.compile(r"(?<![\w.])-(\d+)\s*/\s*(\d+)"), r"minus \1 by \2"),
    (re.compile(r"(\d+)\s*/\s*(\d+)"), r"\1 by \2"),
    # Powers
    (re.compile(r"(\w)²"), r"\1 squared"),
    (re.compile(r"(\w)³"), r"\1 cubed"),
    (re.compile(r"\^\s*\(?(-?\d+)\)?"), r" to the power \1"),
    # Operators between operands
    (re.compile(r"\s*=\s*"), " equals "),
    (re.compile(r"(?<=[\w)])\s*\+\s*(?=[\w(])"), " plus "),
    (re.compile(r"(?<=[\w)])\s+-\s+(?=[\w(])"), " minus "),
    (re.compile(r"(?<=\d)\s*\*\s*(?=\d)"), " times "),
    (re.compile(r"(?<![\w.])-(\d)"), r"minus \1"),
    (re.compile(r"(\d+(?:\.\d+)?)\s*%"), r"\1 percent"),
    # Abbreviations
    (re.compile(r"\be\.g\."), "for example"),
    (re.compile(r"\bi\.e\."), "that is"),
    (re.compile(r"\betc\."), "etcetera"),
    (re.compile(r"\bEq\.?\s*(\d+)"), r"Equation \1"),
    (re.compile(r"\bFig\.?\s*(\d+)"), r"Figure \1"),
    (re.compile(r"\bQ\.?\s*(\d+)"), r"Question \1"),
]

# Single-letter variables glued together: "ma" in "F = ma" stays a word, but
# "mc" before a power is split so it is read letter by letter.
_GLUED_VARS = re.compile(r"\b([a-zA-Z])([a-zA-Z])(?= squared| cubed| to the power)")


def math_to_speech(text: str) -> str:
    if not text:
        return text
    result = text
    for symbol, word in _SUBSCRIPTS.items():
        result = result.replace(symbol, f" {word} ")
    for rule, replacement in _RULES:
        result = rule.sub(replacement, result)
    result = _GLUED_VARS.sub(r"\1 \2", result)
    for symbol, word in {**_GREEK, **_SYMBOLS}.items():
        result = result.replace(symbol, f" {word} ")
    return result


def clean_for_tts(text: str, language: str = "english") -> str:
    """Speakable text for one sentence. Brackets dropped, whitespace collapsed."""
    if not text:
        return text
    result = math_to_speech(text)
    result = re.sub(r"[()\[\]{}]", " ", result)
    if language in ("hindi", "hinglish") and re.search(r"[ऀ-ॿ]", result):
        result = re.sub(r"(\d+) by (\d+)", r"\1 baata \2", result)
    # \w misses Devanagari matras, so the block is listed explicitly
    result = re.sub(r"[^\w\sऀ-ॿ.,?!:;'-]", " ", result)
    return re.sub(r"\s+", " ", result).strip()
