"""
manualbot - Traffic Camera Vision Demo
========================================
Sends every ``*.jpg`` in ``data/traffic-cam`` to an image-capable model
and asks for a structured ``TrafficCamResult``.  The model may call the
``raise_alert`` tool when a camera looks broken or something unusual is
happening.

Usage:
    python -m manualbot.scripts.vision_demo
    python -m manualbot.scripts.vision_demo --images path/to/jpgs
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from enum import Enum
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from langchain_core.tools import StructuredTool  # noqa: E402
from pydantic import BaseModel, ConfigDict  # noqa: E402
from pydantic.alias_generators import to_camel  # noqa: E402


class TrafficStatus(str, Enum):
    CLEAR = "Clear"
    FLOWING = "Flowing"
    CONGESTED = "Congested"
    BLOCKED = "Blocked"


class TrafficCamResult(BaseModel):
    """What the model reports for one camera frame."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: TrafficStatus
    num_cars: int
    num_trucks: int


def raise_alert(camera_name: str, alert_reason: str) -> str:
    """
    Raise an alert for a traffic camera.

    Args:
        camera_name: Name of the camera the alert is about.
        alert_reason: Why the alert is being raised.
    """
    print("*** CAMERA ALERT ***")
    print(f"Camera {camera_name}: {alert_reason}")
    return "Alert raised."


async def analyse(images: list[Path]) -> int:
    """Analyse each image in turn; returns the number of frames with a usable result."""
    from manualbot.config.prompt_templates import VISION_PROMPT_TEMPLATE
    from manualbot.src.core.chat_client import ChatMessage, ChatOptions, ChatRole, ImageContent, complete_structured
    from manualbot.src.core.middleware import ChatClientBuilder
    from manualbot.src.core.providers import OllamaChatClient, create_vision_client
    from manualbot.src.utils.logger import get_logger

    logger = get_logger(__name__)

    client = ChatClientBuilder(create_vision_client()).use_function_invocation().build()
    use_native_schema = client.get_service(OllamaChatClient) is not None
    options = ChatOptions(tools=[StructuredTool.from_function(raise_alert, parse_docstring=True)])

    analysed = 0
    for image_path in images:
        name = image_path.stem
        message = ChatMessage(ChatRole.USER, VISION_PROMPT_TEMPLATE.format(camera_name=name), images=[ImageContent(image_path.read_bytes(), "image/jpeg")])
        structured = await complete_structured(client, [message], TrafficCamResult, options=options, use_native_schema=use_native_schema)

        if structured.result is None:
            logger.warning("No usable result for camera %s: %s", name, structured.error)
            continue
        result = structured.result
        print(f"{name} status: {result.status.value} (cars: {result.num_cars}, trucks: {result.num_trucks})")
        analysed += 1
    return analysed


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vision_demo", description="manualbot: Structured output from traffic camera images.")
    parser.add_argument("--images", type=Path, default=None, help="Directory of .jpg frames (defaults to settings.TRAFFIC_CAM_DIR).")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    try:
        from manualbot.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error: check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)

    image_dir = args.images or settings.TRAFFIC_CAM_DIR
    images = sorted(image_dir.glob("*.jpg"))
    if not images:
        print(f"No .jpg images found in {image_dir}")
        sys.exit(1)

    analysed = asyncio.run(analyse(images))
    print(f"\n{analysed}/{len(images)} frame(s) analysed.")


if __name__ == "__main__":
    main()
