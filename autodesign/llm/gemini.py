from __future__ import annotations

import base64
import json
import logging
import random
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from PIL import Image, ImageDraw, ImageFont

from .. import prompts as _p
from ..config import Settings

LOGGER = logging.getLogger(__name__)

KINDS = ("detect", "decide", "critique", "validate_spatial", "summarize", "image_edit")
# auth failures are never retried
_NON_RETRYABLE = ("PERMISSION_DENIED", "API_KEY_INVALID", "401", "403")

T = TypeVar("T")


def call_gemini(kind: str, *, settings: Optional[Settings] = None, **kwargs) -> Dict[str, Any]:
    """Unified entry for Gemini calls.

    kind: one of {"detect", "decide", "critique", "validate_spatial", "summarize", "image_edit"}
    kwargs: payload for the corresponding action

    Without an API key, deterministic local placeholders are returned so the
    agent remains runnable offline. With a key, errors surface to the caller.
    """
    if kind not in KINDS:
        raise ValueError(f"Unsupported kind={kind}")
    settings = settings or Settings.from_env()
    if not settings.api_key:
        return _local_placeholder(kind, **kwargs)
    return _real_gemini(kind, settings=settings, **kwargs)


# ------------------------- Offline placeholders -------------------------

_PLACEHOLDER_OBJECTS = [
    {"name": "Sofa", "category": "Furniture", "box_2d": [520, 180, 820, 640]},
    {"name": "Coffee Table", "category": "Furniture", "box_2d": [700, 330, 860, 560]},
    {"name": "Floor Lamp", "category": "Decor", "box_2d": [250, 700, 780, 790]},
    {"name": "Area Rug", "category": "Decor", "box_2d": [780, 120, 980, 760]},
    {"name": "Oak Floor", "category": "Surface", "box_2d": [650, 0, 1000, 1000]},
    {"name": "Walls", "category": "Structure", "box_2d": [0, 0, 650, 1000]},
]


def _stable_number(text: str) -> int:
    return sum(ord(c) for c in text) % 100


def _local_placeholder(kind: str, **kwargs) -> Dict[str, Any]:
    if kind == "detect":
        return {"objects": [dict(o) for o in _PLACEHOLDER_OBJECTS]}

    if kind == "decide":
        context: Dict[str, Any] = kwargs.get("context", {}) or {}
        iteration = int(context.get("iteration", 0))
        rng = random.Random(42 + iteration)
        names = [str(o.get("name")) for o in context.get("objects", []) if o.get("name")] or ["Room"]
        goal = context.get("design_goal", "the target style")
        action = ["EDIT", "EDIT", "MOVE", "REMOVE", "EDIT"][iteration % 5]
        target = names[rng.randrange(len(names))]
        return {"decision": {
            "action": action,
            "target": target,
            "reason": f"{target} does not yet reflect {goal}",
            "prompt": f"{action.lower()} the {target} so it fits a {goal} look",
            "confidence": round(0.55 + rng.random() * 0.4, 2),
            "styleAlignment": f"Moves the {target} toward {goal}",
        }}

    if kind == "critique":
        image_path: str = str(kwargs.get("image_path", ""))
        summary: Dict[str, Any] = kwargs.get("decision_summary", {}) or {}
        # stable pseudo-scores based on filename and target
        base = _stable_number(Path(image_path).name + str(summary.get("target", "")))
        quality = 55 + (base % 41)
        style = 50 + ((base * 7) % 46)
        success = quality >= 70
        return {"analysis": {
            "qualityScore": quality,
            "styleScore": style,
            "success": success,
            "strengths": ["Lighting preserved", "Edit confined to the target"],
            "weaknesses": [] if success else ["Visible blending seam around the edit"],
            "styleNotes": f"{summary.get('target', 'Target')} reads as {summary.get('style_goal', 'the goal')}",
            "lessonLearned": (
                f"{summary.get('action', 'EDIT')} works well on {summary.get('target', 'items')}"
                if success else f"Describe materials explicitly when editing {summary.get('target', 'items')}"
            ),
            "betterApproach": None if success else "Use a narrower, material-specific prompt",
        }}

    if kind == "validate_spatial":
        decision: Dict[str, Any] = kwargs.get("decision", {}) or {}
        constraints: Dict[str, Any] = kwargs.get("constraints", {}) or {}
        target = str(decision.get("target", "")).lower()
        warnings: List[str] = []
        if str(decision.get("action", "")).upper() == "MOVE":
            for c in constraints.get("constraints", []) or []:
                if target and target in str(c.get("description", "")).lower():
                    warnings.append(f"{decision.get('target')} is constrained: {c.get('description')}")
        return {"valid": not warnings, "warnings": warnings}

    if kind == "summarize":
        texts: Sequence[str] = kwargs.get("texts", []) or []
        rules: List[str] = []
        for t in texts:
            rule = str(t).strip()[:160]
            if rule and rule not in rules:
                rules.append(rule)
        return {"rules": rules[:5]}

    if kind == "image_edit":
        out_path = Path(str(kwargs.get("out_path")))
        decision = kwargs.get("decision", {}) or {}
        _write_placeholder_edit(
            Path(str(kwargs.get("image_path", ""))),
            out_path,
            f"{decision.get('action', 'EDIT')} {decision.get('target', '')}".strip(),
        )
        return {"path": str(out_path)}

    raise ValueError(f"Unsupported kind={kind}")


def _write_placeholder_edit(src: Path, dst: Path, label: str) -> None:
    """Copy the source image and stamp the applied action into a bottom band."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    if src.is_file():
        with Image.open(src) as im:
            canvas = im.convert("RGB")
    else:
        canvas = Image.new("RGB", (768, 512), (236, 232, 226))
    draw = ImageDraw.Draw(canvas)
    w, h = canvas.size
    band = max(24, h // 12)
    draw.rectangle([0, h - band, w, h], fill=(40, 40, 40))
    font = ImageFont.load_default()
    draw.text((10, h - band + (band - 10) // 2), label, fill=(245, 245, 245), font=font)
    canvas.save(dst, format="PNG")


# ------------------------- Real Google GenAI calls -------------------------

def _with_retry(fn: Callable[[], T], *, retries: int, label: str) -> T:
    last_error: Optional[Exception] = None
    for attempt in range(retries):
        try:
            return fn()
        except Exception as e:
            last_error = e
            if any(tok in str(e) for tok in _NON_RETRYABLE):
                raise
            if attempt < retries - 1:
                delay = 2 ** attempt
                LOGGER.info("%s attempt %d failed (%s), retrying in %ds", label, attempt + 1, e, delay)
                time.sleep(delay)
    raise last_error or RuntimeError(f"{label}: no attempts were made")


def _real_gemini(kind: str, *, settings: Settings, **kwargs) -> Dict[str, Any]:
    import google.generativeai as genai

    genai.configure(api_key=settings.api_key)
    request_options = {"timeout": settings.timeout_s}

    def _reason(parts: List[Any], temperature: float) -> Any:
        # primary reasoning model first, fallback model if it keeps failing
        def _run(model_name: str) -> Any:
            model = genai.GenerativeModel(
                model_name,
                generation_config={"response_mime_type": "application/json", "temperature": temperature},
            )
            resp = model.generate_content(parts, request_options=request_options)
            return _robust_json(_first_text(resp))

        try:
            return _with_retry(lambda: _run(settings.reasoning_model), retries=settings.max_retries, label=kind)
        except Exception as e:
            if any(tok in str(e) for tok in _NON_RETRYABLE):
                raise
            LOGGER.warning("%s on %s failed (%s), falling back to %s", kind, settings.reasoning_model, e,
                           settings.reasoning_fallback_model)
            return _with_retry(lambda: _run(settings.reasoning_fallback_model), retries=settings.max_retries,
                               label=kind)

    if kind == "detect":
        image_part = _image_part_from_path(str(kwargs.get("image_path")))
        data = _reason([image_part, {"text": _p.build_detect_prompt()}], temperature=0.2)
        objects = data if isinstance(data, list) else (data.get("objects", []) if isinstance(data, dict) else [])
        return {"objects": [o for o in objects if isinstance(o, dict)]}

    if kind == "decide":
        context = kwargs.get("context", {}) or {}
        image_part = _image_part_from_path(str(kwargs.get("image_path")))
        data = _reason([image_part, {"text": _p.build_decision_prompt(context)}], temperature=0.7)
        if not isinstance(data, dict):
            raise ValueError("decide: model did not return JSON dict")
        return {"decision": data}

    if kind == "critique":
        summary = kwargs.get("decision_summary", {}) or {}
        image_part = _image_part_from_path(str(kwargs.get("image_path")))
        data = _reason([image_part, {"text": _p.build_critique_prompt(summary)}], temperature=0.3)
        if not isinstance(data, dict):
            raise ValueError("critique: non-JSON")
        return {"analysis": data}

    if kind == "validate_spatial":
        prompt = _p.build_spatial_prompt(kwargs.get("decision", {}) or {}, kwargs.get("constraints", {}) or {})
        data = _reason([{"text": prompt}], temperature=0.2)
        if not isinstance(data, dict) or "valid" not in data:
            raise ValueError("validate_spatial: model did not return a verdict")
        return {
            "valid": bool(data.get("valid")),
            "warnings": [str(w) for w in data.get("warnings", []) or []],
            "alternative_suggestion": data.get("alternative_suggestion"),
        }

    if kind == "summarize":
        texts = list(kwargs.get("texts", []) or [])
        prompt = _p.build_summarize_prompt(texts, str(kwargs.get("pattern_kind", "execution")))
        data = _reason([{"text": prompt}], temperature=0.2)
        if isinstance(data, dict):
            data = data.get("rules", [])
        if not isinstance(data, list):
            raise ValueError("summarize: model did not return a JSON array")
        return {"rules": [str(r) for r in data if str(r).strip()]}

    if kind == "image_edit":
        image_path: str = str(kwargs.get("image_path"))
        out_p = Path(str(kwargs.get("out_path")))
        decision = kwargs.get("decision", {}) or {}
        model = genai.GenerativeModel(model_name=settings.image_edit_model)
        parts = [{"text": _p.build_image_edit_prompt(decision)}, _image_part_from_path(image_path)]
        resp = _with_retry(
            lambda: model.generate_content(parts, request_options={"timeout": max(120, settings.timeout_s)}),
            retries=settings.max_retries,
            label=kind,
        )
        out_p.parent.mkdir(parents=True, exist_ok=True)
        try:
            (out_p.parent / (out_p.stem + ".resp.txt")).write_text(str(resp))
        except OSError:
            pass
        img_bytes, mime = _first_image_bytes(resp)
        if not img_bytes:
            LOGGER.warning("image edit returned no image; see %s.resp.txt", out_p.stem)
            return {"path": None}
        with open(out_p, "wb") as f:
            f.write(img_bytes)
        with open(str(out_p) + ".meta.json", "w", encoding="utf-8") as mf:
            mf.write(json.dumps({"source": "gemini", "mime": mime, "bytes": len(img_bytes)}, ensure_ascii=False))
        return {"path": str(out_p)}

    raise ValueError(f"Unsupported kind={kind}")


def _first_text(resp: Any) -> str:
    # resp.text raises ValueError when the candidate carries no single text part
    try:
        text = resp.text
    except (AttributeError, ValueError):
        text = None
    if text:
        return text
    for c in getattr(resp, "candidates", None) or []:
        content = getattr(c, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "text", None):
                return part.text
    raise ValueError("model response carried no text (blocked or empty candidate)")


def _first_image_bytes(resp: Any) -> tuple[bytes | None, str]:
    # resp.candidates[].content.parts[].inline_data
    for c in getattr(resp, "candidates", None) or []:
        content = getattr(c, "content", None)
        parts = getattr(content, "parts", None) if content else None
        for part in parts or []:
            inline = getattr(part, "inline_data", None)
            if inline and getattr(inline, "data", None):
                data = inline.data
                mime = getattr(inline, "mime_type", "image/png")
                if isinstance(data, bytes):
                    return data, mime
                # some versions may base64-encode
                try:
                    return base64.b64decode(data), mime
                except (ValueError, TypeError):
                    continue
    return None, ""


_MIME_BY_SUFFIX = {".png": "image/png", ".webp": "image/webp", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


def _image_part_from_path(path: str) -> Dict[str, Any]:
    # google-generativeai accepts dict with mime_type and data bytes for images
    p = Path(path)
    mime = _MIME_BY_SUFFIX.get(p.suffix.lower(), "image/jpeg")
    return {"mime_type": mime, "data": p.read_bytes()}


def _robust_json(text: str) -> Any:
    # Try parse whole, then strip code fences, then extract first {...} or [...] block
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    for candidate in (text, cleaned):
        try:
            return json.loads(candidate)
        except ValueError:
            pass
    # whichever bracket opens first is the outermost value
    pairs = sorted(
        (("{", "}"), ("[", "]")),
        key=lambda pair: cleaned.find(pair[0]) if cleaned.find(pair[0]) != -1 else len(cleaned),
    )
    for open_ch, close_ch in pairs:
        start = cleaned.find(open_ch)
        end = cleaned.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start : end + 1])
            except ValueError:
                pass
    return {}
