from __future__ import annotations

import os
import re
from typing import Optional

from openai import APIStatusError, AsyncOpenAI

from config_utils import read_float_env, read_int_env


class TranslationUnavailableError(RuntimeError):
    pass


class TranslationServiceError(RuntimeError):
    pass


class TranslationService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        fallback_model: Optional[str] = "gpt-4o-mini",
    ) -> None:
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise TranslationUnavailableError("OPENAI_API_KEY is required for translation.")
        self._client = AsyncOpenAI(api_key=key)
        primary_model = (model or "").strip() or "gpt-4o"
        self._models = [primary_model]
        if fallback_model and fallback_model.strip() and fallback_model.strip() not in self._models:
            self._models.append(fallback_model.strip())
        self._active_model_index = 0
        self._temperature = read_float_env("TRANSLATION_TEMPERATURE", 0.3, allow_zero=True)
        self._max_completion_tokens = read_int_env("TRANSLATION_MAX_TOKENS", 1024)
        self.last_error: Optional[str] = None

    @property
    def active_model(self) -> str:
        return self._models[min(self._active_model_index, len(self._models) - 1)]

    async def translate_text(self, text: str, target_language: str) -> str:
        self.last_error = None
        cleaned = self._sanitize(text)
        if not cleaned:
            return ""
        system_prompt = (
            "You are a helpful assistant. "
            f"Translate the following text accurately to {target_language}. "
            "Output only the translated text."
        )
        try:
            return await self._chat(cleaned, system_prompt)
        except TranslationServiceError as exc:
            self.last_error = str(exc)
            raise

    async def _chat(self, user_prompt: str, system_prompt: str) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        last_exc: Optional[Exception] = None
        while self._active_model_index < len(self._models):
            model_name = self._models[self._active_model_index]
            try:
                response = await self._client.chat.completions.create(
                    model=model_name,
                    temperature=self._temperature,
                    messages=messages,
                    max_tokens=self._max_completion_tokens,
                )
                content = response.choices[0].message.content or ""
                return self._sanitize(content)
            except APIStatusError as exc:
                last_exc = exc
                # Promote to the fallback model once and keep it for later requests.
                if exc.status_code in (400, 404) and self._active_model_index + 1 < len(self._models):
                    self._active_model_index += 1
                    continue
                raise TranslationServiceError(f"OpenAI API error: {exc.status_code} {exc.message}") from exc
            except Exception as exc:  # noqa: BLE001 - API boundary
                last_exc = exc
                break
        raise TranslationServiceError(f"Translation API failed with all configured models: {last_exc}") from last_exc

    @staticmethod
    def _sanitize(text: str) -> str:
        return re.sub(r"\s+", " ", text or "").strip()
