from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict

logger = logging.getLogger("smartpredict.prompts")

PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def load_prompt(prompt_path: Path) -> str:
    """Read a prompt template; a UTF-8 BOM is dropped and undecodable bytes become U+FFFD."""
    return prompt_path.read_bytes().decode("utf-8-sig", errors="replace")


def render_prompt(prompt_path: Path, values: Dict[str, str]) -> str:
    """Purpose: Fill a chat or insight template with the shopper's context.
    Inputs/Outputs: Inputs are the template path and a NAME -> text mapping; output is
        the prompt with every <<NAME>> replaced.
    Side Effects / State: Reads the template file.
    Dependencies: load_prompt and PLACEHOLDER_RE.
    Failure Modes: A missing template raises FileNotFoundError. Placeholders with no
        value stay in the text and are logged, so the model still gets a prompt.
    If Removed: Profile, purchases, and mood never reach the model.
    Testing Notes: Render weekly_deals.txt without MOOD and expect a warning.
    """
    text = PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), match.group(0)), load_prompt(prompt_path))
    missing = sorted(set(PLACEHOLDER_RE.findall(text)))
    if missing:
        logger.warning("prompt=%s unfilled=%s", prompt_path.name, ",".join(missing))
    return text
