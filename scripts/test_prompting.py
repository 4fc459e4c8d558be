from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from genpipeline.prompting import (
    CAMERA_POSITION_SUFFIX,
    HOOK_VARIATIONS,
    MAX_DIALOGUE_WORDS,
    apply_dialogue_rules,
    create_timing_structure,
    enforce_dialogue_length,
    enhance_prompt,
    fix_dialogue_caps,
    format_structured_prompt,
    hook_variations,
    render_prompt,
    segment_prompt,
)

BASE_TEXT = "A professional woman presenting in a car dealership with cinematic lighting, saying: Welcome in"


def test_all_caps_dialogue_is_sentence_cased() -> None:
    fixed = fix_dialogue_caps('She shouts "HELLO THERE FRIENDS" and then "OK"')
    if fixed != 'She shouts "Hello there friends" and then "OK"':
        raise RuntimeError(f"Unexpected caps fix: {fixed}")


def test_dialogue_is_capped_at_word_limit() -> None:
    words = " ".join(f"w{index}" for index in range(MAX_DIALOGUE_WORDS + 5))
    capped = enforce_dialogue_length(f'Narrator: "{words}" (calm)')
    spoken = capped.split('"')[1].split()
    if len(spoken) != MAX_DIALOGUE_WORDS or not capped.endswith(" (calm)"):
        raise RuntimeError(f"Dialogue not capped to {MAX_DIALOGUE_WORDS} words: {capped}")
    short = 'Says "just five words right here"'
    if enforce_dialogue_length(short) != short:
        raise RuntimeError("Short dialogue should be unchanged.")


def test_keyword_tables_drive_enhancement() -> None:
    structured = enhance_prompt(BASE_TEXT, 8, aspect_ratio="9:16")
    config = structured["config"]
    if config["environment"]["location"] != "automotive dealership showroom":
        raise RuntimeError(f"Dealership should win over car: {config['environment']['location']}")
    if config["lighting"]["mood"] != "cinematic dramatic lighting":
        raise RuntimeError(f"Unexpected lighting: {config['lighting']['mood']}")
    if not config["camera"]["position"].endswith(CAMERA_POSITION_SUFFIX):
        raise RuntimeError(f"Camera position lacks suffix: {config['camera']['position']}")
    if config["audio"]["primary"] != 'Clear professional dialogue: "Welcome in"':
        raise RuntimeError(f"Unexpected primary audio: {config['audio']['primary']}")
    if config["aspect_ratio"] != "9:16" or structured["prompt"] != BASE_TEXT:
        raise RuntimeError("Enhancement must keep the original text and requested aspect ratio.")
    if enhance_prompt(BASE_TEXT, 8, aspect_ratio="9:16") != structured:
        raise RuntimeError("Enhancement is not deterministic.")


def test_timing_wording_depends_on_duration() -> None:
    short = create_timing_structure(BASE_TEXT, 4)
    medium = create_timing_structure(BASE_TEXT, 6)
    full = create_timing_structure(BASE_TEXT, 8)
    if set(short) != {"0-2s", "2-6s", "6-8s"}:
        raise RuntimeError(f"Unexpected timing keys: {sorted(short)}")
    if len({short["0-2s"], medium["0-2s"], full["0-2s"]}) != 3:
        raise RuntimeError("Each duration band should open differently.")
    if not full["0-2s"].startswith("Hook:") or not full["2-6s"].startswith("Main action:"):
        raise RuntimeError(f"Unexpected 8s timing: {full}")


def test_structured_prompt_rendering() -> None:
    structured = enhance_prompt(BASE_TEXT, 8)
    structured["timing"]["2-6s"] = 'She says "BUY NOW TODAY"'
    text = format_structured_prompt(structured)
    if not text.startswith(f"Main Prompt: {BASE_TEXT}"):
        raise RuntimeError(f"Rendered prompt should lead with the main prompt: {text[:80]}")
    for marker in ("Negative Prompt:", "TIMING STRUCTURE:", "- Seconds 0-2:", "Camera Setup:", "Audio Production:"):
        if marker not in text:
            raise RuntimeError(f"Rendered prompt missing {marker!r}")
    if '"Buy now today"' not in text:
        raise RuntimeError("Dialogue rules were not applied before rendering.")
    if structured["timing"]["2-6s"] != 'She says "BUY NOW TODAY"':
        raise RuntimeError("Rendering must not mutate the caller's prompt.")


def test_render_prompt_passthrough_and_enhance() -> None:
    if render_prompt("plain text") != "plain text":
        raise RuntimeError("Plain prompts without enhancement must pass through unchanged.")
    enhanced = render_prompt("plain text", enhance=True, duration_seconds=6)
    if not enhanced.startswith("Main Prompt: plain text") or "TIMING STRUCTURE:" not in enhanced:
        raise RuntimeError(f"Enhanced prompt not structured: {enhanced[:80]}")
    if render_prompt({"prompt": "only main"}) != "Main Prompt: only main":
        raise RuntimeError("Minimal structured prompt rendered unexpectedly.")


def test_hook_variations_are_capped() -> None:
    variations = hook_variations(BASE_TEXT, count=10)
    if len(variations) != len(HOOK_VARIATIONS):
        raise RuntimeError(f"Expected {len(HOOK_VARIATIONS)} variations, got {len(variations)}")
    openings = [variation["timing"]["0-2s"] for variation in variations]
    if openings != list(HOOK_VARIATIONS):
        raise RuntimeError("Variations should use each hook opening once, in order.")
    if not variations[1]["prompt"].endswith("[Hook Variation 2]"):
        raise RuntimeError(f"Unexpected variation prompt: {variations[1]['prompt']}")


def test_segment_prompt_keeps_shared_setting() -> None:
    first = segment_prompt(BASE_TEXT, "Opens the car door", 0)
    second = segment_prompt(BASE_TEXT, "Sits behind the wheel", 1, preserve_character=False)
    if first["config"]["environment"] != second["config"]["environment"]:
        raise RuntimeError("Segments should share the environment.")
    if first["config"]["camera"]["motion"] == second["config"]["camera"]["motion"]:
        raise RuntimeError("Consecutive segments should vary camera motion.")
    if second["prompt"] != "Sits behind the wheel." or "Preserve" not in first["prompt"]:
        raise RuntimeError(f"Unexpected segment prompts: {first['prompt']!r} / {second['prompt']!r}")


def test_dialogue_rules_touch_primary_audio() -> None:
    long_line = " ".join(["word"] * 30)
    prompt = apply_dialogue_rules({"prompt": "x", "config": {"audio": {"primary": f'Line: "{long_line}"'}}})
    spoken = prompt["config"]["audio"]["primary"].split('"')[1].split()
    if len(spoken) != MAX_DIALOGUE_WORDS:
        raise RuntimeError(f"Primary audio dialogue not capped: {len(spoken)} words")


def test_non_dict_sections_are_ignored() -> None:
    loose = {
        "prompt": "agent at desk",
        "config": "cinematic",
    }
    if format_structured_prompt(loose) != "Main Prompt: agent at desk":
        raise RuntimeError(f"String config should be skipped: {format_structured_prompt(loose)!r}")
    nested = {"prompt": "x", "config": {"camera": "wide", "technical": ["4k"], "audio": "loud"}}
    if format_structured_prompt(nested) != "Main Prompt: x":
        raise RuntimeError(f"Non-dict sections should be skipped: {format_structured_prompt(nested)!r}")
    scene = segment_prompt({"prompt": "x", "config": "cinematic"}, "Walks in", 0)
    if scene["config"]["character"]["action"] != "Walks in":
        raise RuntimeError(f"Segment prompt should rebuild a non-dict config: {scene['config']}")


def main() -> int:
    tests = [
        test_all_caps_dialogue_is_sentence_cased,
        test_dialogue_is_capped_at_word_limit,
        test_keyword_tables_drive_enhancement,
        test_timing_wording_depends_on_duration,
        test_structured_prompt_rendering,
        test_render_prompt_passthrough_and_enhance,
        test_hook_variations_are_capped,
        test_segment_prompt_keeps_shared_setting,
        test_dialogue_rules_touch_primary_audio,
        test_non_dict_sections_are_ignored,
    ]
    for test in tests:
        try:
            test()
        except RuntimeError as exc:
            print(f"prompting test failed ({test.__name__}): {exc}", file=sys.stderr)
            return 1
    print(f"prompting tests passed ({len(tests)} checks)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
