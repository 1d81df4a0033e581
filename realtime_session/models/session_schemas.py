"""
Pydantic models for Realtime API session configuration.

These models describe the `session` object carried by `session.update`,
`session.created` and `session.updated` events. Fields the server adds that
this client does not model (ids, expiry, newer options) are kept as extras so
a configuration survives a decode/encode cycle unchanged.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from realtime_session.config.constants import UNBOUNDED_TOKENS


class Modality(str, Enum):
    """Output modality of the session."""
    TEXT = "text"
    AUDIO = "audio"


class Voice(str, Enum):
    """Voices accepted by the Realtime API."""
    ALLOY = "alloy"
    ASH = "ash"
    BALLAD = "ballad"
    CORAL = "coral"
    ECHO = "echo"
    FABLE = "fable"
    NOVA = "nova"
    ONYX = "onyx"
    SAGE = "sage"
    SHIMMER = "shimmer"
    VERSE = "verse"


class AudioFormat(str, Enum):
    """Wire format of input and output audio."""
    PCM16 = "pcm16"
    G711_ULAW = "g711_ulaw"
    G711_ALAW = "g711_alaw"


class TurnDetectionType(str, Enum):
    """Server-side voice activity segmentation policy."""
    SERVER_VAD = "server_vad"
    NONE = "none"


class ToolChoiceMode(str, Enum):
    """How the model may pick tools."""
    NONE = "none"
    AUTO = "auto"
    REQUIRED = "required"


class TranscriptionConfig(BaseModel):
    """Input audio transcription settings."""
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = "whisper-1"


class TurnDetection(BaseModel):
    """Turn detection settings."""
    model_config = ConfigDict(extra="allow")

    type: str = TurnDetectionType.SERVER_VAD.value
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    silence_duration_ms: Optional[int] = Field(default=None, ge=0)
    prefix_padding_ms: Optional[int] = Field(default=None, ge=0)


class ToolDefinition(BaseModel):
    """Function tool exposed to the model."""
    type: str = "function"
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None

    @field_validator("name")
    def validate_name(cls, v):
        """Validate that the tool name is not empty."""
        if not v.strip():
            raise ValueError("Tool name cannot be empty")
        return v


class FunctionToolChoice(BaseModel):
    """Tool choice forcing a call to one named function."""
    type: Literal["function"] = "function"
    name: str


ToolChoice = Union[ToolChoiceMode, FunctionToolChoice]
MaxTokens = Union[int, Literal["inf"]]


class SessionConfig(BaseModel):
    """Configuration of a realtime session."""
    model_config = ConfigDict(extra="allow")

    modalities: List[Modality] = Field(
        default_factory=lambda: [Modality.TEXT, Modality.AUDIO]
    )
    instructions: str = ""
    voice: str = Voice.ALLOY.value
    input_audio_format: str = AudioFormat.PCM16.value
    output_audio_format: str = AudioFormat.PCM16.value
    input_audio_transcription: Optional[TranscriptionConfig] = None
    turn_detection: Optional[TurnDetection] = None
    tools: List[ToolDefinition] = Field(default_factory=list)
    tool_choice: ToolChoice = ToolChoiceMode.AUTO
    temperature: float = 0.8
    max_response_output_tokens: MaxTokens = 4096

    @field_validator("modalities")
    def validate_modalities(cls, v):
        """Modalities are a set; drop repeats while keeping order."""
        seen = []
        for modality in v:
            if modality not in seen:
                seen.append(modality)
        return seen

    @field_validator("max_response_output_tokens")
    def validate_max_tokens(cls, v):
        """Integer limits must be positive; the only symbolic value is 'inf'."""
        if isinstance(v, int) and v <= 0:
            raise ValueError("max_response_output_tokens must be positive")
        return v

    @property
    def unbounded_output(self) -> bool:
        return self.max_response_output_tokens == UNBOUNDED_TOKENS

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the JSON shape of the `session` object."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_payload(cls, data: Optional[Dict[str, Any]]) -> "SessionConfig":
        """Build a configuration from a `session` object received on the wire."""
        return cls.model_validate(data or {})
