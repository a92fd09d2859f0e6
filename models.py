import time
from enum import Enum
from typing import Optional


class CopilotModel(str, Enum):
    """Model names exactly as they appear in the Copilot picker."""
    AUTO = "Auto"
    QUICK = "Quick response"
    THINK = "Think deeper"
    GPT52_QUICK = "GPT-5.2 Quick response"
    GPT52_THINK = "GPT-5.2 Think deeper"


# Only reachable after expanding the picker's "More" group
MODELS_IN_MORE_SECTION = {CopilotModel.GPT52_QUICK, CopilotModel.GPT52_THINK}

MODEL_ALIASES = {
    "copilot-auto": CopilotModel.AUTO,
    "auto": CopilotModel.AUTO,

    "copilot-quick": CopilotModel.QUICK,
    "gpt-4o": CopilotModel.QUICK,
    "gpt-4o-mini": CopilotModel.QUICK,
    "gpt-4": CopilotModel.QUICK,
    "gpt-3.5-turbo": CopilotModel.QUICK,

    "copilot-think": CopilotModel.THINK,
    "o1": CopilotModel.THINK,
    "o1-mini": CopilotModel.THINK,
    "o1-preview": CopilotModel.THINK,

    "gpt-5.2": CopilotModel.GPT52_QUICK,
    "gpt-5.2-quick": CopilotModel.GPT52_QUICK,
    "gpt-5": CopilotModel.GPT52_QUICK,

    "gpt-5.2-think": CopilotModel.GPT52_THINK,
    "o3": CopilotModel.GPT52_THINK,
    "o3-mini": CopilotModel.GPT52_THINK,
}

DEFAULT_MODEL = CopilotModel.AUTO
DEFAULT_MODEL_NAME = "copilot-auto"

AVAILABLE_MODEL_NAMES = [
    "copilot-auto",
    "copilot-quick",
    "copilot-think",
    "gpt-5.2-quick",
    "gpt-5.2-think",
]


def map_model_name(model_name: str) -> Optional[CopilotModel]:
    return MODEL_ALIASES.get(model_name.strip().lower())


def is_valid_model(model_name: str) -> bool:
    return map_model_name(model_name) is not None


def get_copilot_model(model_name: Optional[str] = None) -> CopilotModel:
    if not model_name:
        return DEFAULT_MODEL
    return map_model_name(model_name) or DEFAULT_MODEL


def model_not_found_message(model_name: str) -> str:
    return f"Model '{model_name}' is not supported. Available models: {', '.join(AVAILABLE_MODEL_NAMES)}"


def list_models() -> dict:
    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {"id": name, "object": "model", "created": created, "owned_by": "microsoft-copilot"}
            for name in AVAILABLE_MODEL_NAMES
        ],
    }
