"""OpenAI Chat Completions client for crop diagnosis."""

from dataclasses import dataclass

from openai import AsyncOpenAI, OpenAIError

from crop_doctor.domain.errors import OracleFailureError
from crop_doctor.services.diagnosis import DiagnosisClient


@dataclass
class OpenAIDiagnosisClient(DiagnosisClient):
    """Diagnosis client backed by the OpenAI Chat Completions API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str) -> "OpenAIDiagnosisClient":
        """Create an OpenAI diagnosis client."""
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def diagnose(self, *, model: str, prompt: str, image_data_url: str) -> str:
        """Send the prompt and image and return the free-form answer."""
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image_data_url}},
                        ],
                    }
                ],
            )
        except OpenAIError as exc:
            raise OracleFailureError(str(exc) or type(exc).__name__) from exc
        if not response.choices:
            raise OracleFailureError("OpenAI returned no choices")
        content = response.choices[0].message.content
        if not content:
            raise OracleFailureError("OpenAI returned an empty response")
        return content

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.client.close()
