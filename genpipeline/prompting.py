from __future__ import annotations

import copy
import re
from typing import Any

MAX_DIALOGUE_WORDS = 15
TIMING_KEYS = ("0-2s", "2-6s", "6-8s")

DEFAULT_NEGATIVE_PROMPT = (
    "blurry, low-resolution, cartoonish, plastic, synthetic, distorted, poor quality, "
    "pixelated, green screen background, chroma key, solid color background"
)

# First matching keyword wins; order matters.
CAMERA_MOTION_TABLE: tuple[tuple[str, str], ...] = (
    ("tracking", "smooth professional tracking shot"),
    ("dolly", "cinematic dolly-in movement"),
    ("pan", "smooth panoramic movement"),
    ("zoom", "subtle zoom for dramatic effect"),
    ("stable", "rock-steady professional shot"),
    ("handheld", "natural handheld movement with stabilization"),
)
DEFAULT_CAMERA_MOTION = "smooth professional tracking shot"

CAMERA_POSITION_TABLE: tuple[tuple[str, str], ...] = (
    ("selfie", "handheld selfie position"),
    ("tripod", "professional tripod setup"),
    ("phone", "mobile phone recording position"),
    ("interview", "professional interview setup"),
)
DEFAULT_CAMERA_POSITION = "professional camera operator position"
CAMERA_POSITION_SUFFIX = "(that's where the camera is)"

LIGHTING_TABLE: tuple[tuple[str, str], ...] = (
    ("cinematic", "cinematic dramatic lighting"),
    ("dramatic", "high-contrast dramatic lighting"),
    ("soft", "soft diffused professional lighting"),
    ("natural", "natural daylight lighting"),
    ("studio", "professional studio lighting setup"),
    ("warm", "warm inviting lighting"),
    ("commercial", "bright commercial lighting"),
)
DEFAULT_LIGHTING = "professional natural lighting with soft shadows"

LOCATION_TABLE: tuple[tuple[str, str], ...] = (
    ("office", "modern professional office environment"),
    ("studio", "professional video studio setup"),
    ("outdoor", "natural outdoor location"),
    ("home", "professional home office environment"),
    ("background", "clean professional background"),
    ("kitchen", "modern kitchen setting"),
    ("dealership", "automotive dealership showroom"),
    ("car", "vehicle interior"),
)
DEFAULT_LOCATION = "professional indoor setting with clean background"

AMBIENT_TABLE: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("office", ("subtle office ambience", "keyboard clicks", "air conditioning hum")),
    ("outdoor", ("natural outdoor ambience", "wind sounds", "birds chirping")),
    ("studio", ("clean studio acoustics", "minimal room tone")),
    ("kitchen", ("cooking sounds", "utensil sounds", "appliance hum")),
    ("dealership", ("showroom ambience", "distant conversations", "air conditioning")),
    ("car", ("engine idle", "air conditioning", "seat adjustment")),
)
DEFAULT_AMBIENT = ("professional background ambience", "subtle room tone")

ACTION_KEYWORDS = (
    "speaking",
    "presenting",
    "demonstrating",
    "explaining",
    "showing",
    "gesturing",
    "smiling",
    "nodding",
)
DEFAULT_ACTION = "speaking naturally to camera with confident expression"

CHARACTER_KEYWORDS = ("professional", "woman", "man", "person", "expert", "advisor")
DEFAULT_CHARACTER = "Professional person with authentic appearance"

HOOK_VARIATIONS = (
    "Professional confident introduction with direct eye contact and natural smile",
    "Attention-grabbing opening with slight forward lean and engaging expression",
    "Warm welcoming approach with friendly gesture and approachable demeanor",
    "Expert authority opening with confident posture and knowing expression",
    "Relatable conversation starter with natural head tilt and genuine smile",
)

SEGMENT_CAMERA_MOTIONS = (
    "stable professional shot",
    "smooth subtle tracking shot",
    "gentle dolly-in movement",
    "slight zoom for emphasis",
    "smooth pan following action",
)

_QUOTED = re.compile(r'"([^"]*?)"')
_SAYING = re.compile(r"saying:\s*([^.]*)", re.IGNORECASE)


def _lookup(text: str, table: tuple[tuple[str, Any], ...], default: Any) -> Any:
    lowered = text.lower()
    for keyword, value in table:
        if keyword in lowered:
            return value
    return default


def extract_action(text: str) -> str:
    lowered = text.lower()
    for action in ACTION_KEYWORDS:
        if action in lowered:
            return f"{action} naturally to camera with professional demeanor"
    return DEFAULT_ACTION


def extract_character(text: str) -> str:
    for sentence in (part.strip() for part in text.split(".")):
        words = set(re.findall(r"[a-z]+", sentence.lower()))
        if words.intersection(CHARACTER_KEYWORDS):
            return sentence
    return DEFAULT_CHARACTER


def extract_primary_audio(text: str) -> str:
    match = _SAYING.search(text)
    if match and match.group(1).strip():
        return f'Clear professional dialogue: "{match.group(1).strip()}"'
    return "Professional clear dialogue with natural intonation and pacing"


def create_timing_structure(text: str, duration_seconds: int) -> dict[str, str]:
    """Three beats: opening hook, main action, close. Wording tightens for shorter clips."""
    action = extract_action(text)
    location = _lookup(text, LOCATION_TABLE, DEFAULT_LOCATION)
    if duration_seconds <= 4:
        return {
            "0-2s": "Professional introduction with confident eye contact and natural smile",
            "2-6s": f"{action} while naturally interacting with {location}",
            "6-8s": "Professional conclusion with engaging gesture toward camera",
        }
    if duration_seconds <= 6:
        return {
            "0-2s": "Attention-grabbing opening with confident expression and eye contact",
            "2-6s": f"{action} demonstrating expertise while naturally moving through {location}",
            "6-8s": "Strong closing with call-to-action gesture and professional smile",
        }
    return {
        "0-2s": "Hook: Confident introduction with natural smile and professional presence",
        "2-6s": f"Main action: {action} while authentically interacting with {location} showing expertise",
        "6-8s": "Conclusion: Professional closing with engaging gesture and brand reinforcement",
    }


def camera_movements(text: str, duration_seconds: int) -> list[str]:
    movements = ["stable professional opening shot"]
    if duration_seconds >= 6:
        lowered = text.lower()
        if "walking" in lowered or "moving" in lowered:
            movements.append("smooth tracking following natural movement")
        else:
            movements.append("subtle zoom for engagement")
    if duration_seconds >= 8:
        movements.append("professional pull-back for context")
    return movements


def enhance_prompt(
    text: str,
    duration_seconds: int = 8,
    *,
    aspect_ratio: str = "16:9",
    resolution: str = "1080p",
) -> dict[str, Any]:
    """
    Map free text onto the structured prompt layout using the keyword tables above.

    Pure function: the same text always yields the same structure.
    """
    position = _lookup(text, CAMERA_POSITION_TABLE, DEFAULT_CAMERA_POSITION)
    return {
        "prompt": text,
        "negative_prompt": DEFAULT_NEGATIVE_PROMPT,
        "timing": create_timing_structure(text, duration_seconds),
        "config": {
            "duration_seconds": duration_seconds,
            "aspect_ratio": aspect_ratio,
            "resolution": resolution,
            "camera": {
                "motion": _lookup(text, CAMERA_MOTION_TABLE, DEFAULT_CAMERA_MOTION),
                "angle": "eye-level professional angle",
                "lens_type": "50mm professional lens",
                "position": f"{position} {CAMERA_POSITION_SUFFIX}",
                "movements": camera_movements(text, duration_seconds),
            },
            "lighting": {
                "mood": _lookup(text, LIGHTING_TABLE, DEFAULT_LIGHTING),
                "consistency": "maintain consistent lighting throughout segment",
            },
            "character": {
                "description": extract_character(text),
                "action": extract_action(text),
                "preservation": "maintain exact facial features, expressions, and identity markers",
            },
            "environment": {
                "location": _lookup(text, LOCATION_TABLE, DEFAULT_LOCATION),
                "atmosphere": "professional and engaging environment",
            },
            "audio": {
                "primary": extract_primary_audio(text),
                "ambient": list(_lookup(text, AMBIENT_TABLE, DEFAULT_AMBIENT)),
                "quality": "professional broadcast quality audio",
            },
        },
    }


def fix_dialogue_caps(text: str) -> str:
    """Quoted all-caps dialogue is spelled out letter by letter by the model; sentence-case it."""

    def _replace(match: re.Match[str]) -> str:
        dialogue = match.group(1)
        if len(dialogue) > 3 and dialogue == dialogue.upper() and dialogue != dialogue.lower():
            lowered = dialogue.lower()
            return f'"{lowered[:1].upper()}{lowered[1:]}"'
        return match.group(0)

    return _QUOTED.sub(_replace, text)


def enforce_dialogue_length(text: str, max_words: int = MAX_DIALOGUE_WORDS) -> str:
    match = _QUOTED.search(text)
    if not match:
        return text
    words = match.group(1).split()
    if len(words) <= max_words:
        return text
    truncated = " ".join(words[:max_words])
    return f'{text[: match.start()]}"{truncated}"{text[match.end():]}'


def apply_dialogue_rules(structured: dict[str, Any]) -> dict[str, Any]:
    prompt = copy.deepcopy(structured)
    if isinstance(prompt.get("prompt"), str):
        prompt["prompt"] = fix_dialogue_caps(prompt["prompt"])
    timing = prompt.get("timing")
    if isinstance(timing, dict):
        for key in TIMING_KEYS:
            if isinstance(timing.get(key), str):
                timing[key] = fix_dialogue_caps(timing[key])
    config = prompt.get("config")
    audio = config.get("audio") if isinstance(config, dict) else None
    if isinstance(audio, dict) and isinstance(audio.get("primary"), str):
        audio["primary"] = enforce_dialogue_length(audio["primary"])
    return prompt


def _section(lines: list[str], title: str, block: Any, fields: tuple[tuple[str, str], ...]) -> None:
    if not isinstance(block, dict) or not block:
        return
    lines.append("")
    lines.append(f"{title}:")
    for key, label in fields:
        value = block.get(key)
        if value in (None, "", []):
            continue
        if isinstance(value, list):
            joiner = " -> " if key == "movements" else ", "
            value = joiner.join(str(item) for item in value)
        lines.append(f"- {label}: {value}")


def format_structured_prompt(structured: dict[str, Any]) -> str:
    """
    Render a structured prompt into the plain text sent to the model.

    Unknown keys are ignored; missing sections are skipped.
    """
    prompt = apply_dialogue_rules(structured)
    config = prompt.get("config")
    if not isinstance(config, dict):
        config = {}
    technical = config.get("technical")
    if not isinstance(technical, dict):
        technical = {}

    lines: list[str] = [f"Main Prompt: {prompt.get('prompt', '')}".rstrip()]
    if prompt.get("negative_prompt"):
        lines.append(f"Negative Prompt: {prompt['negative_prompt']}")

    timing = prompt.get("timing")
    if isinstance(timing, dict) and timing:
        lines.append("")
        lines.append("TIMING STRUCTURE:")
        for key in TIMING_KEYS:
            if timing.get(key):
                lines.append(f"- Seconds {key[:-1]}: {timing[key]}")

    video_fields = {key: config.get(key) for key in ("duration_seconds", "aspect_ratio", "resolution")}
    _section(
        lines,
        "Video Configuration",
        {key: value for key, value in video_fields.items() if value is not None},
        (("duration_seconds", "Duration (seconds)"), ("aspect_ratio", "Aspect Ratio"), ("resolution", "Resolution")),
    )
    _section(
        lines,
        "Camera Setup",
        config.get("camera"),
        (
            ("motion", "Motion"),
            ("angle", "Angle"),
            ("lens_type", "Lens"),
            ("position", "Position"),
            ("movements", "Movements"),
        ),
    )
    _section(
        lines,
        "Lighting Design",
        config.get("lighting"),
        (("mood", "Mood"), ("time_of_day", "Time"), ("consistency", "Consistency")),
    )
    _section(
        lines,
        "Character Direction",
        config.get("character"),
        (("description", "Description"), ("action", "Action"), ("preservation", "Preservation")),
    )
    _section(
        lines,
        "Environment Setup",
        config.get("environment"),
        (("location", "Location"), ("atmosphere", "Atmosphere")),
    )
    _section(
        lines,
        "Audio Production",
        config.get("audio"),
        (("primary", "Primary Audio"), ("ambient", "Ambient Sounds"), ("quality", "Quality"), ("music", "Music")),
    )
    _section(
        lines,
        "Technical Requirements",
        technical,
        tuple((key, str(key).replace("_", " ").title()) for key in sorted(technical, key=str)),
    )
    return "\n".join(lines).strip()


def render_prompt(
    prompt: str | dict[str, Any],
    *,
    enhance: bool = False,
    duration_seconds: int = 8,
    aspect_ratio: str = "16:9",
    resolution: str = "1080p",
) -> str:
    """Text actually sent to the model for a request prompt."""
    if isinstance(prompt, dict):
        return format_structured_prompt(prompt)
    if enhance:
        structured = enhance_prompt(
            prompt, duration_seconds, aspect_ratio=aspect_ratio, resolution=resolution
        )
        return format_structured_prompt(structured)
    return prompt


def hook_variations(base: str | dict[str, Any], count: int = 3, duration_seconds: int = 8) -> list[dict[str, Any]]:
    """Copies of the prompt that differ only in the opening beat."""
    structured = base if isinstance(base, dict) else enhance_prompt(base, duration_seconds)
    variations: list[dict[str, Any]] = []
    for index, hook in enumerate(HOOK_VARIATIONS[: max(0, count)], start=1):
        variation = copy.deepcopy(structured)
        timing = variation.get("timing")
        if not isinstance(timing, dict):
            timing = {}
            variation["timing"] = timing
        timing["0-2s"] = hook
        variation["prompt"] = f"{structured.get('prompt', '')} [Hook Variation {index}]".strip()
        variations.append(variation)
    return variations


def _dict_section(parent: dict[str, Any], key: str) -> dict[str, Any]:
    section = parent.get(key)
    if not isinstance(section, dict):
        section = {}
        parent[key] = section
    return section


def segment_prompt(
    base: str | dict[str, Any],
    scene: str,
    index: int,
    *,
    duration_seconds: int = 8,
    aspect_ratio: str = "16:9",
    preserve_character: bool = True,
) -> dict[str, Any]:
    """Per-scene prompt for a sequence: shared character/setting, scene-specific action and camera."""
    if isinstance(base, dict):
        structured = copy.deepcopy(base)
    else:
        structured = enhance_prompt(base, duration_seconds, aspect_ratio=aspect_ratio)
    suffix = " Preserve exact facial features, character identity and visual consistency." if preserve_character else ""
    structured["prompt"] = f"{scene}.{suffix}"
    config = _dict_section(structured, "config")
    _dict_section(config, "character")["action"] = scene
    _dict_section(config, "camera")["motion"] = SEGMENT_CAMERA_MOTIONS[index % len(SEGMENT_CAMERA_MOTIONS)]
    return structured
