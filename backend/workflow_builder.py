# backend/workflow_builder.py

import json
import random
from pathlib import Path
from typing import Dict, Any, Optional

from .prompts import StylePrompt


# Directory holding the API-format workflow JSON files
WORKFLOWS_DIR = Path(__file__).resolve().parents[1] / "workflows"

STYLE_WORKFLOW = "style_img2img.json"

# SaveImage node in style_img2img.json; its outputs hold the result in /history
OUTPUT_NODE_ID = "9"

POSITIVE_TITLE = "Positive Prompt"
NEGATIVE_TITLE = "Negative Prompt"


def load_workflow(filename: str) -> Dict[str, Any]:
    """
    Read a workflow JSON file and return it as a dict we can patch.
    """
    path = WORKFLOWS_DIR / filename
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _iter_nodes(workflow: Dict[str, Any], *class_types: str):
    for node_id, node in workflow.items():
        if not isinstance(node, dict):
            continue
        if node.get("class_type") in class_types:
            yield node_id, node


def _set_seed_random(workflow: Dict[str, Any], seed: Optional[int] = None) -> int:
    """
    Set the seed of the first KSampler node. Random 63-bit seed unless one is given.
    """
    seed_val = random.randint(0, 2**63 - 1) if seed is None else seed

    for _, node in _iter_nodes(workflow, "KSampler"):
        inputs = node.get("inputs", {})
        if "seed" in inputs:
            inputs["seed"] = seed_val
            break
    return seed_val


def _set_prompts(workflow: Dict[str, Any], prompt: StylePrompt) -> None:
    """
    Fill the positive/negative CLIPTextEncode nodes, told apart by their _meta title.
    """
    for _, node in _iter_nodes(workflow, "CLIPTextEncode"):
        title = node.get("_meta", {}).get("title")
        inputs = node.setdefault("inputs", {})
        if title == POSITIVE_TITLE:
            inputs["text"] = prompt.positive
        elif title == NEGATIVE_TITLE:
            inputs["text"] = prompt.negative


def _set_input_image(workflow: Dict[str, Any], image_name: str) -> None:
    for _, node in _iter_nodes(workflow, "LoadImage", "ImageLoader"):
        inputs = node.get("inputs", {})
        if "image" in inputs:
            inputs["image"] = image_name
            return
    raise ValueError("workflow has no LoadImage node")


def _set_checkpoint(workflow: Dict[str, Any], ckpt_name: str) -> None:
    for _, node in _iter_nodes(workflow, "CheckpointLoaderSimple"):
        node.setdefault("inputs", {})["ckpt_name"] = ckpt_name


def build_style_workflow(
    prompt: StylePrompt,
    image_name: str,
    ckpt_name: Optional[str] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Build the img2img style transfer job:
    - load style_img2img.json
    - point LoadImage at the uploaded file (name as ComfyUI stored it)
    - set positive/negative prompts for the style
    - optional checkpoint override
    - random seed
    """
    wf = load_workflow(STYLE_WORKFLOW)

    _set_input_image(wf, image_name)
    _set_prompts(wf, prompt)
    if ckpt_name:
        _set_checkpoint(wf, ckpt_name)
    _set_seed_random(wf, seed)

    return wf
