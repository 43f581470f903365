"""OpenAI chat message construction for the agent conversation."""
from __future__ import annotations

import base64
import io
import json
from typing import Any, Dict, List, Optional

from PIL import Image

Message = Dict[str, Any]


def system_message(content: str) -> Message:
    return {"role": "system", "content": content}


def user_message(text: str, image_url: Optional[str] = None) -> Message:
    """User turn; with an image the content becomes a list of parts, image last."""
    if not image_url:
        return {"role": "user", "content": text}
    return {
        "role": "user",
        "content": [
            {"type": "text", "text": text},
            {"type": "image_url", "image_url": {"url": image_url}},
        ],
    }


def tool_message(call_id: str, result: Dict[str, Any]) -> Message:
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "content": json.dumps(result, default=str),
    }


def screenshot_to_data_url(png_bytes: bytes, max_width: int = 1024, jpeg_quality: int = 70) -> str:
    """Downscale a PNG screenshot and encode it as a base64 JPEG data URL."""
    image = Image.open(io.BytesIO(png_bytes))
    if image.width > max_width:
        height = max(1, round(image.height * max_width / image.width))
        image = image.resize((max_width, height))
    if image.mode != "RGB":
        image = image.convert("RGB")

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=jpeg_quality)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def has_image(message: Message) -> bool:
    content = message.get("content")
    if not isinstance(content, list):
        return False
    return any(isinstance(part, dict) and part.get("type") == "image_url" for part in content)


def without_images(message: Message) -> Message:
    """Copy of `message` with image parts dropped and text parts joined."""
    content = message.get("content")
    if not isinstance(content, list):
        return dict(message)
    texts = [
        part.get("text", "")
        for part in content
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return {**message, "content": "\n".join(texts)}


def truncate_images(messages: List[Message]) -> List[Message]:
    """Replace base64 image URLs with a placeholder, for debug logging."""
    out = []
    for m in messages:
        content = m.get("content")
        if isinstance(content, list):
            new_items = []
            for item in content:
                if isinstance(item, dict) and item.get("type") == "image_url":
                    new_items.append({"type": "image_url", "image_url": {"url": "<image_base64_truncated>"}})
                else:
                    new_items.append(item)
            m = {**m, "content": new_items}
        out.append(m)
    return out
