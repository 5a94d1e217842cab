from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_TOKENS = 2048
DEFAULT_TIMEOUT_SECONDS = 30.0


class QueryOptions(BaseModel):
    """Sampling options sent along with a query."""

    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(
        default=DEFAULT_MAX_TOKENS,
        ge=0,
        description="Maximum tokens to generate (0 leaves it to the backend)"
    )


class StreamChunk(BaseModel):
    """One text fragment surfaced to the caller while streaming."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(description="Text fragment")
    is_new_turn: bool = Field(
        default=False,
        description="True only for the first fragment of a response"
    )


class StreamFrame(BaseModel):
    """One decoded line of an Ollama streaming response."""

    model_config = ConfigDict(extra="ignore")

    response: str = Field(default="", description="Text fragment, possibly empty")
    done: bool = Field(default=False, description="Completion flag")
    error: str | None = Field(default=None, description="Backend error message")


class ModelInfo(BaseModel):
    """A model offered by the backend."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
