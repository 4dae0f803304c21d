import random
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

Rng = Callable[[], float]

NORMAL = "normal"
ADVANTAGE = "advantage"
DISADVANTAGE = "disadvantage"
ROLL_MODES = (NORMAL, ADVANTAGE, DISADVANTAGE)

# Advantage and disadvantage only ever apply to a single d20.
ADVANTAGE_DIE = 20

DEFAULT_FACES = 20
MAX_DICE = 100
MAX_FACES = 1000

_NOTATION_RE = re.compile(r"^(\d*)d(\d+)([+-]\d+)?$")


def _to_int(value, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip().lower().lstrip("d")
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def _clamp_quantity(value) -> int:
    quantity = _to_int(value, 1)
    if quantity < 1:
        return 1
    return min(quantity, MAX_DICE)


def _clamp_faces(value) -> int:
    faces = _to_int(value, DEFAULT_FACES)
    if faces < 2:
        return DEFAULT_FACES
    return min(faces, MAX_FACES)


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class ExtraDice:
    """Bonus dice added to a damage roll, e.g. sneak attack."""
    quantity: int = 0
    die_faces: int = 6


@dataclass
class RollSpecification:
    die_faces: int = DEFAULT_FACES
    quantity: int = 1
    modifier: int = 0
    mode: str = NORMAL
    critical: bool = False
    extra_dice: Optional[ExtraDice] = None
    label: str = ""

    @classmethod
    def from_payload(cls, payload: Optional[dict]) -> "RollSpecification":
        """Build a spec from a client payload, coercing anything unusable.

        Accepts the camelCase wire keys (``dieFaces``, ``extraDice``) as well
        as the legacy ``diceType: "d20"`` / ``rollMode`` fields.
        """
        if not isinstance(payload, dict):
            payload = {}

        faces = payload.get("dieFaces", payload.get("die_faces", payload.get("diceType")))
        mode = payload.get("mode", payload.get("rollMode", NORMAL))
        if not isinstance(mode, str) or mode.lower() not in ROLL_MODES:
            mode = NORMAL

        extra = None
        raw_extra = payload.get("extraDice", payload.get("extra_dice"))
        if isinstance(raw_extra, dict):
            extra_quantity = _to_int(raw_extra.get("quantity", raw_extra.get("count")), 0)
            if extra_quantity > 0:
                extra = ExtraDice(
                    quantity=min(extra_quantity, MAX_DICE),
                    die_faces=_clamp_faces(raw_extra.get("dieFaces", raw_extra.get("die_faces", 6))),
                )

        label = payload.get("label")
        return cls(
            die_faces=_clamp_faces(faces),
            quantity=_clamp_quantity(payload.get("quantity")),
            modifier=_to_int(payload.get("modifier"), 0),
            mode=mode.lower(),
            critical=_to_bool(payload.get("critical", payload.get("isCritical", False))),
            extra_dice=extra,
            label=label if isinstance(label, str) else "",
        )

    @classmethod
    def from_notation(cls, notation: str, **kwargs) -> "RollSpecification":
        count, sides, modifier = parse_notation(notation)
        return cls(die_faces=sides, quantity=count, modifier=modifier, **kwargs)


@dataclass
class RollResult:
    die_faces: int
    quantity: int
    modifier: int
    rolls: List[int]
    kept: List[int]
    raw_total: int
    final_result: int
    mode: str = NORMAL
    requested_mode: str = NORMAL
    critical: bool = False
    dropped: Optional[int] = None
    extra_rolls: List[int] = field(default_factory=list)
    extra_die_faces: Optional[int] = None
    dice_description: str = ""
    description: str = ""

    @property
    def individual_rolls(self) -> List[int]:
        return self.rolls + self.extra_rolls

    def to_dict(self) -> dict:
        return {
            "dieFaces": self.die_faces,
            "diceType": f"d{self.die_faces}",
            "quantity": self.quantity,
            "modifier": self.modifier,
            "individualRolls": self.individual_rolls,
            "rolls": self.rolls,
            "extraRolls": self.extra_rolls,
            "extraDieFaces": self.extra_die_faces,
            "kept": self.kept,
            "dropped": self.dropped,
            "rawResult": self.raw_total,
            "finalResult": self.final_result,
            "mode": self.mode,
            "rollMode": self.requested_mode,
            "critical": self.critical,
            "diceDescription": self.dice_description,
            "description": self.description,
        }


def parse_notation(notation: str) -> Tuple[int, int, int]:
    """Parse dice notation like '2d6+3', 'd20', '1d4-1' into (count, sides, modifier)."""
    clean = re.sub(r"\s", "", notation or "").lower()
    match = _NOTATION_RE.match(clean)
    if not match:
        raise ValueError(f"Invalid dice notation: {notation}")

    count_str, sides_str, modifier_str = match.groups()
    count = int(count_str) if count_str else 1
    sides = int(sides_str)
    modifier = int(modifier_str) if modifier_str else 0

    if count < 1 or count > MAX_DICE:
        raise ValueError(f"Dice count must be between 1 and {MAX_DICE}, got {count}")
    if sides < 2 or sides > MAX_FACES:
        raise ValueError(f"Invalid die type: d{sides}")
    return count, sides, modifier


def roll_die(faces: int, rng: Rng = random.random) -> int:
    return int(rng() * faces) + 1


def _roll_many(count: int, faces: int, rng: Rng) -> List[int]:
    return [roll_die(faces, rng) for _ in range(count)]


def _signed(modifier: int) -> str:
    if modifier > 0:
        return f" + {modifier}"
    if modifier < 0:
        return f" - {abs(modifier)}"
    return ""


def resolve(spec: RollSpecification, rng: Rng = random.random) -> RollResult:
    """Resolve a roll specification into concrete dice.

    Pure apart from ``rng``, which must return floats in [0, 1). Values in
    ``spec`` are clamped the same way ``from_payload`` clamps them, so a
    hand-built spec can never escape the documented ranges.
    """
    faces = _clamp_faces(spec.die_faces)
    quantity = _clamp_quantity(spec.quantity)
    modifier = _to_int(spec.modifier, 0)
    requested = spec.mode if spec.mode in ROLL_MODES else NORMAL

    if requested != NORMAL and faces == ADVANTAGE_DIE and quantity == 1:
        first, second = roll_die(faces, rng), roll_die(faces, rng)
        if requested == ADVANTAGE:
            kept, dropped = max(first, second), min(first, second)
        else:
            kept, dropped = min(first, second), max(first, second)
        total = kept + modifier
        return RollResult(
            die_faces=faces,
            quantity=2,
            modifier=modifier,
            rolls=[first, second],
            kept=[kept],
            dropped=dropped,
            raw_total=kept,
            final_result=total,
            mode=requested,
            requested_mode=requested,
            dice_description="2d20",
            description=f"{requested.upper()}: [{kept} / ~~{dropped}~~]{_signed(modifier)} = {total}",
        )

    multiplier = 2 if spec.critical else 1
    base_count = quantity * multiplier
    rolls = _roll_many(base_count, faces, rng)
    dice_description = f"{base_count}d{faces}"

    extra_rolls: List[int] = []
    extra_faces = None
    extra_quantity = 0
    if spec.extra_dice is not None:
        extra_quantity = max(0, min(_to_int(spec.extra_dice.quantity, 0), MAX_DICE))
    if extra_quantity > 0:
        extra_faces = _clamp_faces(spec.extra_dice.die_faces)
        extra_count = extra_quantity * multiplier
        extra_rolls = _roll_many(extra_count, extra_faces, rng)
        dice_description += f" + {extra_count}d{extra_faces}"

    raw_total = sum(rolls) + sum(extra_rolls)
    total = raw_total + modifier
    description = f"Rolled {dice_description}: [{', '.join(str(r) for r in rolls + extra_rolls)}]"
    description += f"{_signed(modifier)} = {total}"
    if spec.critical:
        description += " (CRITICAL!)"

    return RollResult(
        die_faces=faces,
        quantity=base_count,
        modifier=modifier,
        rolls=rolls,
        kept=rolls + extra_rolls,
        raw_total=raw_total,
        final_result=total,
        mode=NORMAL,
        requested_mode=requested,
        critical=bool(spec.critical),
        extra_rolls=extra_rolls,
        extra_die_faces=extra_faces,
        dice_description=dice_description,
        description=description,
    )


def roll(notation: str, rng: Rng = random.random, **kwargs) -> RollResult:
    """Parse and roll dice notation, e.g. ``roll("2d6+3", critical=True)``."""
    return resolve(RollSpecification.from_notation(notation, **kwargs), rng)
