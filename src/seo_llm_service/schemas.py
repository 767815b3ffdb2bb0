from typing import Optional

from pydantic import BaseModel, Field

from seo_llm_core import GenerationOptions, StreamOptions


class GenerateRequest(BaseModel):
    """Body of a non-streaming generate call."""

    system_instruction: str
    user_prompt: str = Field(min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    json_mode: bool = True
    max_output_tokens: int = Field(default=8192, gt=0)
    use_external_retrieval: bool = False

    def to_options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.temperature,
            json_mode=self.json_mode,
            max_output_tokens=self.max_output_tokens,
            use_external_retrieval=self.use_external_retrieval,
        )


class StreamRequest(BaseModel):
    """Body of a streaming generate call. Streams are always plain text."""

    system_instruction: str
    user_prompt: str = Field(min_length=1)
    temperature: Optional[float] = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=32768, gt=0)
    use_external_retrieval: bool = False

    def to_options(self) -> StreamOptions:
        return StreamOptions(
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            use_external_retrieval=self.use_external_retrieval,
        )


class GenerateResponse(BaseModel):
    text: str
