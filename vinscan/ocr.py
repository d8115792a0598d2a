"""
Pick a VIN out of OCR text.

OCR output from a door-jamb label or a windshield plate is noisy: the VIN may
be glued to its label ("VIN:1FA..."), split over two lines, or surrounded by
other 17-character runs (part numbers, barcodes). ``extract_vin`` runs an
ordered list of strategies over the text and returns the answer of the first
one that finds anything:

1. every valid 17-character window of every line, scored with line context
2. the first valid 17-character run in the label-stripped, joined text
3. the first valid 17-character run in the raw joined text
4. the longest VIN-looking partial run, as a last resort
"""

import io
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

import pytesseract
from PIL import Image
from starlette.concurrency import run_in_threadpool


logger = logging.getLogger(__name__)

VIN_LENGTH = 17

# I, O and Q never appear in a VIN
FULL_VIN_RE = re.compile(r"[A-HJ-NPR-Z0-9]{17}")
VIN_KEYWORD_RE = re.compile(
    r"\b(VIN|VEHICLE\s*ID|VEHICLE\s*IDENTIFICATION)\b", re.IGNORECASE
)
# A label at the start of a line or right after a non-alphanumeric character.
VIN_LABEL_RE = re.compile(r"(?:^|[^A-Z0-9])(?:VIN|V1N)[\s:;#-]*", re.IGNORECASE)
LEADING_VIN_LABEL_RE = re.compile(r"^(?:VIN|V1N)[\s:;#-]*", re.IGNORECASE)
VIN_TOKEN_RE = re.compile(r"VIN|V1N")
REPEATED_CHAR_RE = re.compile(r"(.)\1{5,}")
LINE_BREAK_RE = re.compile(r"\r?\n")
NON_ALNUM_RE = re.compile(r"[^A-Z0-9]+")
LIGHT_STRIP_RE = re.compile(r"[\s-]+")
AMBIGUOUS_CHARS_RE = re.compile(r"[IOQ]")

BASE_SCORE = 100
KEYWORD_ON_LINE_BONUS = 35
KEYWORD_ON_NEIGHBOR_BONUS = 20
LABEL_STRIPPED_BONUS = 35
INSIDE_LABEL_PENALTY = 70
MIXED_LETTERS_BONUS = 6
MIXED_DIGITS_BONUS = 6
REPEATED_CHAR_PENALTY = 25

MIN_RUN_LENGTH = 8


@dataclass(frozen=True)
class VinCandidate:
    value: str
    score: int


def normalize_vin(value: str) -> str:
    """Uppercase and drop every character outside A-Z and 0-9."""
    return NON_ALNUM_RE.sub("", value.upper())


def normalize_vin_light(value: str) -> str:
    """Uppercase and drop whitespace and hyphens only, for typed-in VINs."""
    return LIGHT_STRIP_RE.sub("", value.upper())


def has_vin_ambiguous_chars(value: str) -> bool:
    """True when the value holds I, O or Q, which a real VIN never does.

    Used to ask the user to double check an OCR result, never to reject it.
    """
    return AMBIGUOUS_CHARS_RE.search(normalize_vin_light(value)) is not None


def _split_lines(text_blocks: Optional[Iterable[str]]) -> List[str]:
    lines = []
    for block in text_blocks or ():
        if not block:
            continue
        for line in LINE_BREAK_RE.split(str(block)):
            line = line.strip()
            if line:
                lines.append(line)
    return lines


def _strip_leading_label(line: str) -> str:
    return LEADING_VIN_LABEL_RE.sub("", line, count=1)


def _scan_targets(line: str) -> List[tuple]:
    """The normalized line, plus its remainder after a VIN label if it has one."""
    targets = []
    normalized = normalize_vin(line)
    if normalized:
        targets.append((normalized, False))

    label = VIN_LABEL_RE.search(line)
    if label:
        stripped = normalize_vin(line[label.end():])
        if stripped:
            targets.append((stripped, True))
    return targets


def _score_candidate(
    candidate: str,
    line: str,
    prev_line: str,
    next_line: str,
    label_stripped: bool,
    starts_in_label: bool,
) -> int:
    score = BASE_SCORE
    if VIN_KEYWORD_RE.search(line):
        score += KEYWORD_ON_LINE_BONUS
    if VIN_KEYWORD_RE.search(prev_line) or VIN_KEYWORD_RE.search(next_line):
        score += KEYWORD_ON_NEIGHBOR_BONUS
    if label_stripped:
        score += LABEL_STRIPPED_BONUS
    # a window starting inside "VIN"/"V1N" is reading the label as VIN characters
    if starts_in_label:
        score -= INSIDE_LABEL_PENALTY

    letters = sum(1 for ch in candidate if ch.isalpha())
    digits = sum(1 for ch in candidate if ch.isdigit())
    if letters >= 3:
        score += MIXED_LETTERS_BONUS
    if digits >= 3:
        score += MIXED_DIGITS_BONUS

    # same character six times in a row is OCR garbage
    if REPEATED_CHAR_RE.search(candidate):
        score -= REPEATED_CHAR_PENALTY

    return score


def collect_line_candidates(lines: Sequence[str]) -> List[VinCandidate]:
    """Every valid 17-character window of every line, in discovery order."""
    candidates = []
    for index, line in enumerate(lines):
        prev_line = lines[index - 1] if index > 0 else ""
        next_line = lines[index + 1] if index + 1 < len(lines) else ""

        for target, label_stripped in _scan_targets(line):
            label_spans = [m.span() for m in VIN_TOKEN_RE.finditer(target)]
            for start in range(len(target) - VIN_LENGTH + 1):
                window = target[start:start + VIN_LENGTH]
                if not FULL_VIN_RE.fullmatch(window):
                    continue
                starts_in_label = any(s <= start < e for s, e in label_spans)
                score = _score_candidate(
                    window,
                    line,
                    prev_line,
                    next_line,
                    label_stripped,
                    starts_in_label,
                )
                candidates.append(VinCandidate(value=window, score=score))
    return candidates


def _best_line_candidate(lines: Sequence[str]) -> Optional[str]:
    candidates = collect_line_candidates(lines)
    if not candidates:
        return None
    # max() keeps the first of equal scores, so ties go to discovery order
    return max(candidates, key=lambda candidate: candidate.score).value


def _first_full_match(text: str) -> Optional[str]:
    match = FULL_VIN_RE.search(normalize_vin(text))
    return match.group(0) if match else None


def _full_match_label_stripped(lines: Sequence[str]) -> Optional[str]:
    return _first_full_match(" ".join(_strip_leading_label(line) for line in lines))


def _full_match_raw(lines: Sequence[str]) -> Optional[str]:
    return _first_full_match(" ".join(lines))


def _best_run(lines: Sequence[str]) -> Optional[str]:
    joined = " ".join(_strip_leading_label(line) for line in lines)
    tokens = NON_ALNUM_RE.sub(" ", joined.upper()).split()

    runs = []
    for token in tokens:
        if len(token) < MIN_RUN_LENGTH or token.startswith(("VIN", "V1N")):
            continue
        letters = sum(1 for ch in token if ch.isalpha())
        digits = sum(1 for ch in token if ch.isdigit())
        if letters >= 2 and digits >= 3:
            runs.append((token, digits))

    if not runs:
        return None
    runs.sort(key=lambda run: (-len(run[0]), -run[1], run[0]))
    return runs[0][0]


# Most to least trustworthy; the first strategy with an answer wins.
_STRATEGIES = (
    _best_line_candidate,
    _full_match_label_stripped,
    _full_match_raw,
    _best_run,
)


def extract_vin(text_blocks: Optional[Iterable[str]]) -> Optional[str]:
    """
    Find the most likely VIN in a sequence of OCR text blocks.

    Args:
        text_blocks: Text blocks as returned by an OCR engine. Blocks may hold
                     several newline-separated lines.

    Returns:
        str: The best VIN candidate, normally 17 characters. The last-resort
             strategy may return a shorter partial run.
        None: When no strategy finds anything.
    """
    lines = _split_lines(text_blocks)
    for strategy in _STRATEGIES:
        vin = strategy(lines)
        if vin:
            logger.debug(f"VIN '{vin}' selected by {strategy.__name__}")
            return vin

    logger.debug(f"No VIN found in {len(lines)} OCR line(s)")
    return None


class TextExtractor(Protocol):
    def extract_text(self, image_ref) -> Sequence[str]:
        ...


class TesseractTextExtractor:
    """Reads text blocks from an image with Tesseract.

    ``image_ref`` may be a file path, the raw image bytes or a PIL image.
    """

    def __init__(self, language: str = "eng", psm: int = 6):
        self.language = language
        self.psm = psm

    def _load_image(self, image_ref) -> Image.Image:
        if isinstance(image_ref, Image.Image):
            return image_ref
        if isinstance(image_ref, (bytes, bytearray)):
            return Image.open(io.BytesIO(image_ref))
        return Image.open(image_ref)

    def extract_text(self, image_ref) -> List[str]:
        image = self._load_image(image_ref)
        text = pytesseract.image_to_string(
            image, lang=self.language, config=f"--psm {self.psm}"
        )
        # Tesseract separates paragraphs with blank lines
        return [block.strip() for block in re.split(r"\n\s*\n", text) if block.strip()]


async def extract_vin_from_image(
    image_ref, extractor: Optional[TextExtractor] = None
) -> Optional[str]:
    """
    Run OCR on an image and extract a VIN from the recognized text.

    Any OCR failure (engine not installed, unreadable image) yields None.
    """
    extractor = extractor or TesseractTextExtractor()
    try:
        text_blocks = await run_in_threadpool(extractor.extract_text, image_ref)
    except Exception:
        logger.exception("Text extraction failed, no VIN read from image")
        return None

    return extract_vin(text_blocks)
