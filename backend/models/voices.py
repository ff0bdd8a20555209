from dataclasses import dataclass
from types import MappingProxyType

MALE_VOICES: tuple[str, ...] = (
    "Puck", "Charon", "Fenrir", "Orus", "Enceladus", "Iapetus", "Umbriel",
    "Algieba", "Algenib", "Rasalgethi", "Alnilam", "Schedar", "Achird",
    "Zubenelgenubi", "Sadachbia", "Sadaltager",
)

FEMALE_VOICES: tuple[str, ...] = (
    "Zephyr", "Kore", "Leda", "Aoede", "Callirrhoe", "Autonoe", "Despina",
    "Erinome", "Laomedeia", "Achernar", "Gacrux", "Pulcherrima",
    "Vindemiatrix", "Sulafat",
)

ALL_VOICES: tuple[str, ...] = MALE_VOICES + FEMALE_VOICES

RANDOM_VOICE = "__random__"
RANDOM_MALE_VOICE = "__random_male__"
RANDOM_FEMALE_VOICE = "__random_female__"

VOICE_POOLS = MappingProxyType({
    RANDOM_VOICE: ALL_VOICES,
    RANDOM_MALE_VOICE: MALE_VOICES,
    RANDOM_FEMALE_VOICE: FEMALE_VOICES,
})

DEFAULT_VOICE = "Zephyr"


@dataclass(frozen=True)
class SpeakerVoice:
    """A speaker label and the voice requested for it (literal id or random pool)."""
    label: str
    voice: str = DEFAULT_VOICE


def is_random_choice(voice: str) -> bool:
    return voice in VOICE_POOLS
