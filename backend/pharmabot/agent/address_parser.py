"""
Delivery address parser.

Turns newline-delimited free text into a DeliveryAddress:

    John Doe          <- name ("1." style numbering stripped from every line)
    123 Main St       <- address lines
    New Delhi         <- city (line before the pincode)
    110001            <- pincode (5-6 digit standalone token)
    Near Mall         <- landmark (anything after the pincode line)

The pincode may also sit inside a line ("Bangalore 560001", "Kolkata - 700016");
then the alphabetic rest of that line is the city. Without a pincode the last
line is taken as the city and validation fails on the pincode.

This is a best-effort heuristic. When a required field can't be found it
raises ParseError listing the missing fields; it never guesses silently.
"""
import logging
import re
from typing import List, Optional, Tuple

from pharmabot.core.exceptions import ParseError
from pharmabot.schemas.session import DeliveryAddress

logger = logging.getLogger(__name__)

MIN_LINES = 3

PINCODE_TOKEN = re.compile(r"(?<!\d)(\d{5,6})(?!\d)")
VALID_PINCODE = re.compile(r"^\d{5,6}$")
NUMBERING = re.compile(r"^\s*\d{1,2}\s*[.)]\s*")
PINCODE_LABEL = re.compile(r"\b(pin\s*code|pincode|pin|zip(\s*code)?|postal\s*code)\b\s*[:\-]?", re.IGNORECASE)
NAME_LABEL = re.compile(r"^\s*name\s*[:\-]\s*", re.IGNORECASE)
LANDMARK_LABEL = re.compile(r"^\s*landmark\s*[:\-]\s*", re.IGNORECASE)
NON_ALPHA = re.compile(r"[^A-Za-z\s]")


def _clean_lines(text: str) -> List[str]:
    """Non-blank, whitespace-collapsed lines. A numbered list loses its numbering."""
    lines = [re.sub(r"\s+", " ", line).strip() for line in (text or "").splitlines() if line.strip()]
    if lines and NUMBERING.match(lines[0]):
        lines = [NUMBERING.sub("", line) for line in lines]
        lines = [line for line in lines if line]
    return lines


def _collapse(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip(" ,-")


def _is_pincode_line(line: str) -> bool:
    """True when the line holds nothing but the pincode (labels and punctuation aside)."""
    rest = PINCODE_LABEL.sub(" ", line)
    rest = PINCODE_TOKEN.sub(" ", rest, count=1)
    return bool(PINCODE_TOKEN.search(line)) and not re.search(r"[A-Za-z0-9]", rest)


def _find_pincode(lines: List[str]) -> Optional[Tuple[int, str, bool]]:
    """
    Locate the pincode among lines[1:] (line 0 is the name).

    Returns (line index, pincode, standalone) or None. A line that is only
    the pincode wins; otherwise the last embedded occurrence is used.
    """
    for index in range(1, len(lines)):
        if _is_pincode_line(lines[index]):
            return index, PINCODE_TOKEN.search(lines[index]).group(1), True

    for index in range(len(lines) - 1, 0, -1):
        matches = PINCODE_TOKEN.findall(lines[index])
        if matches:
            return index, matches[-1], False
    return None


def _split_embedded(line: str, pincode: str) -> Tuple[List[str], str]:
    """'12 Park St, Kolkata - 700016' -> (['12 Park St'], 'Kolkata')"""
    position = line.rfind(pincode)
    remainder = line[:position] + " " + line[position + len(pincode):]
    remainder = PINCODE_LABEL.sub(" ", remainder)
    segments = [_collapse(s) for s in remainder.split(",")]
    segments = [s for s in segments if s]
    if not segments:
        return [], ""
    city = _collapse(NON_ALPHA.sub(" ", segments[-1]))
    return segments[:-1], city


def _landmark(lines: List[str]) -> Optional[str]:
    if not lines:
        return None
    landmark = ", ".join(LANDMARK_LABEL.sub("", line) for line in lines).strip()
    return landmark or None


def extract_address(text: str) -> DeliveryAddress:
    """Best-effort field extraction without validation."""
    lines = _clean_lines(text)
    if not lines:
        return DeliveryAddress(name="")

    name = NAME_LABEL.sub("", NUMBERING.sub("", lines[0])).strip()
    found = _find_pincode(lines)

    if found is None:
        if len(lines) < 2:
            return DeliveryAddress(name=name)
        return DeliveryAddress(name=name, address_lines=lines[1:-1], city=lines[-1])

    k, pincode, standalone = found
    landmark = _landmark(lines[k + 1:])

    if standalone:
        city = lines[k - 1] if k - 1 >= 1 else ""
        address_lines = lines[1:k - 1] if k - 1 >= 1 else []
        return DeliveryAddress(
            name=name, address_lines=address_lines, city=city, pincode=pincode, landmark=landmark
        )

    leading, city = _split_embedded(lines[k], pincode)
    address_lines = lines[1:k] + leading
    if not city and k - 1 >= 1:
        city = lines[k - 1]
        address_lines = lines[1:k - 1] + leading
    return DeliveryAddress(
        name=name, address_lines=address_lines, city=city, pincode=pincode, landmark=landmark
    )


def missing_fields(address: DeliveryAddress) -> List[str]:
    missing = []
    if not address.name:
        missing.append("name")
    if not address.address_lines:
        missing.append("address")
    if not address.city:
        missing.append("city")
    if not VALID_PINCODE.match(address.pincode or ""):
        missing.append("pincode")
    return missing


def parse_delivery_address(text: str) -> DeliveryAddress:
    """
    Parse and validate free-text delivery details.

    Raises:
        ParseError: with `missing` naming the fields the user must still provide
    """
    line_count = len(_clean_lines(text))
    address = extract_address(text)
    missing = missing_fields(address)

    if line_count < MIN_LINES and not missing:
        missing = ["address"]
    if missing:
        logger.info(f"[Address] Parse failed ({line_count} lines), missing: {', '.join(missing)}")
        raise ParseError(missing)
    return address
