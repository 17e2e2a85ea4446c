from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence


def _bullets(items: Sequence[str], empty: str = "None yet") -> str:
    lines = [f"- {it}" for it in items if str(it).strip()]
    return "\n".join(lines) if lines else empty


def build_detect_prompt() -> str:
    return (
        "Analyze this image and detect ALL distinct objects, surfaces, AND ROOMS.\n"
        "If it is a floor plan, identify each room as its own object (category 'Structure') "
        "with a box around the whole room area.\n"
        "Identify discrete items (lamp, vase, chair, faucet) with tight boxes, and large surfaces "
        "(floor, walls, countertop, backsplash, cabinetry) with boxes covering their full visible extent.\n"
        "Return ONLY a JSON array. Each item: {\"name\": specific label, "
        "\"box_2d\": [ymin, xmin, ymax, xmax] normalized to 0-1000, "
        "\"category\": one of [\"Furniture\", \"Appliance\", \"Structure\", \"Decor\", \"Surface\"]}."
    )


def build_decision_prompt(context: Dict[str, Any]) -> str:
    goal = context.get("design_goal", "")
    keywords: List[str] = list(context.get("style_keywords") or [])
    style = f"\nSTYLE REQUIREMENTS:\n{_bullets(keywords)}\n" if keywords else ""
    objects = [f"{o.get('name')} ({o.get('category')})" for o in context.get("objects", [])]
    execution = [f"[{p['score']:.2f}] {p['content']}" for p in context.get("execution_patterns", [])]
    style_rules = [f"[{p['score']:.2f}] {p['content']}" for p in context.get("style_patterns", [])]
    return (
        f"You are an autonomous interior designer working on a {goal} room renovation.\n"
        f"{style}\n"
        "CURRENT PROGRESS:\n"
        f"- Iteration: {context.get('iteration', 0)}\n"
        f"- Recent changes: {', '.join(context.get('recent_actions') or []) or 'None'}\n\n"
        f"OBJECTS IN THE CURRENT IMAGE:\n{_bullets(objects, 'Unknown')}\n\n"
        f"LEARNED EXECUTION PATTERNS (score, rule):\n{_bullets(execution)}\n\n"
        f"LEARNED STYLE PATTERNS (score, rule):\n{_bullets(style_rules)}\n\n"
        "INSTRUCTIONS:\n"
        "1. Analyze the CURRENT image; it reflects all previous changes.\n"
        "2. Each change must build on previous work and strictly follow the style requirements.\n"
        "3. Only target objects that exist in the list above (EDIT may target the whole room).\n"
        "4. Follow the learned patterns: repeat what works, avoid what failed.\n\n"
        "DECISION TYPES: EDIT (colors, materials, styles), MOVE (relocate), REMOVE (delete), "
        "WAIT (skip if nothing should change).\n\n"
        "Return ONLY JSON: {\"action\": \"EDIT\", \"target\": \"Sofa\", \"reason\": \"...\", "
        "\"prompt\": \"precise edit instruction for the image model\", \"confidence\": 0.85, "
        "\"styleAlignment\": \"how this matches the style\"}"
    )


def build_critique_prompt(decision_summary: Dict[str, Any]) -> str:
    style_goal = decision_summary.get("style_goal", "")
    return (
        "You are a QUALITY ANALYST evaluating an AI designer's work.\n\n"
        "WHAT WAS ATTEMPTED:\n"
        f"- Action: {decision_summary.get('action', '')}\n"
        f"- Target: {decision_summary.get('target', '')}\n"
        f"- Reasoning: {decision_summary.get('reason', '')}\n"
        f"- Style Goal: {style_goal}\n\n"
        "Score the result critically:\n"
        "1. qualityScore (0-100): visual realism, no artifacts\n"
        f"2. styleScore (0-100): how well it matches \"{style_goal}\"\n"
        "3. success: true/false\n"
        "4. strengths: 2-3 points\n"
        "5. weaknesses: 1-2 points\n"
        "6. styleNotes: specific observations about style adherence\n"
        "7. lessonLearned: a reusable rule for future iterations\n"
        "8. betterApproach: what should have been done instead (null if it worked)\n\n"
        "Return ONLY strict JSON with exactly those keys. Be honest and specific."
    )


def build_spatial_prompt(decision: Dict[str, Any], constraints: Dict[str, Any]) -> str:
    return (
        f"Review this action: {decision.get('action')} - {decision.get('prompt')} "
        f"(target: {decision.get('target')}).\n"
        f"Room type: {constraints.get('room_type', 'unknown')}.\n"
        f"Room Constraints: {json.dumps(constraints.get('constraints', []), ensure_ascii=False)}.\n"
        f"Traffic Flow: {constraints.get('traffic_flow', '')}.\n"
        "Is this physically plausible and safe? Be strict on blocking paths, doors and windows.\n"
        "Return ONLY JSON: {\"valid\": boolean, \"warnings\": string[], \"alternative_suggestion\": string}."
    )


def build_summarize_prompt(texts: Sequence[str], kind: str) -> str:
    topic = "aesthetic/style rules" if kind == "style" else "rules about which edit actions work or fail"
    return (
        f"Below are raw {topic} learned by an interior-design agent, one per line. "
        "Many overlap or contradict each other.\n"
        "Distill them into at most 5 short, concrete, non-redundant rules. Prefer the most recent "
        "and most specific evidence.\n"
        "Return ONLY a JSON array of strings.\n\n"
        + "\n".join(f"- {t}" for t in texts)
    )


def build_image_edit_prompt(decision: Dict[str, Any]) -> str:
    action = str(decision.get("action", "EDIT")).upper()
    target = decision.get("target", "")
    if action == "REMOVE":
        base = (
            f"Remove the {target} from this photo. Fill the vacated area with the surrounding floor, "
            "wall and background so it looks like it was never there. "
        )
    elif action == "MOVE":
        base = (
            f"Relocate the {target} as described, keeping its exact appearance, scale and perspective; "
            "fill its old position with the surrounding background. "
        )
    else:
        base = f"Edit the {target}. "
    return (
        base
        + "Change ONLY what the instruction asks; keep camera angle, lighting, room geometry and all "
        "other objects unchanged. Photorealistic result, no text or watermarks. "
        + f"Instructions: {decision.get('prompt', '')}"
    )
