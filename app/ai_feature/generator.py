import logging

import openai
from openai import AsyncOpenAI

from app.ai_feature.prompt import SYSTEM_MESSAGE
from app.core.errors import GenerationUnavailable


logger = logging.getLogger(__name__)

# Transport failures worth one more attempt, API errors are not
TRANSIENT_ERRORS = (openai.APIConnectionError, openai.APITimeoutError)


class QueryGenerator:
    """
    One chat completion round trip per prompt.

    Decoding is pinned to a low temperature so the same question keeps
    producing the same SQL. retries is capped at one.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        temperature: float = 0.0,
        retries: int = 0,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.retries = max(0, min(retries, 1))

    async def _complete(self, prompt: str) -> str:
        completion = await self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
        )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    async def generate(self, prompt: str) -> str:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                content = await self._complete(prompt)
                break
            except TRANSIENT_ERRORS as error:
                if attempt < attempts:
                    logger.warning(f"Generation attempt {attempt} failed, retrying: {error}")
                    continue
                raise GenerationUnavailable(f"Generation request failed: {error}")
            except openai.OpenAIError as error:
                raise GenerationUnavailable(f"Generation request failed: {error}")

        if not content.strip():
            raise GenerationUnavailable("Generation returned an empty response")
        return content


def create_generator(
    api_key: str,
    base_url=None,
    model: str = "gpt-4o-mini",
    temperature: float = 0.0,
    timeout: float = 30.0,
    retries: int = 0,
) -> QueryGenerator:
    # Retries are ours, the client itself must not retry behind our back
    client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
    return QueryGenerator(client, model=model, temperature=temperature, retries=retries)
