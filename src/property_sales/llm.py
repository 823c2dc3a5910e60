"""Model calls made by the sale workflow.

Every call names the task it serves (reading a broker reply, pulling change
requests out of a reply, talking to a buyer, writing a listing post). The task
picks the model tier and sampling temperature, so callers never pass model
names around. Spans carry the property and workflow stage the call was made
for; metrics are keyed by task and stage so cost can be attributed per stage
without a label per property.

HTTP-level spans come from opentelemetry-instrumentation-httpx.
"""

import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from opentelemetry import metrics, trace
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from property_sales.config import LLMProvider, Settings
from property_sales.pii import scrub_completion, scrub_prompt


logger = logging.getLogger(__name__)


class Task(StrEnum):
    INTERPRET = "interpret"
    MODIFICATIONS = "modifications"
    LEAD_REPLY = "lead_reply"
    SOCIAL_POST = "social_post"


@dataclass(frozen=True)
class TaskProfile:
    tier: Literal["fast", "capable"]
    temperature: float | None = None


# Reply reading is a classification job; anything a customer reads goes to
# the capable model.
TASK_PROFILES: dict[Task, TaskProfile] = {
    Task.INTERPRET: TaskProfile("fast", 0.1),
    Task.MODIFICATIONS: TaskProfile("fast", 0.1),
    Task.LEAD_REPLY: TaskProfile("capable", 0.3),
    Task.SOCIAL_POST: TaskProfile("capable"),
}

# USD per million tokens for the models the default settings route to.
PRICING: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-haiku-4-5-20251001": (1.0, 5.0),
    "gpt-4.1-mini": (0.40, 1.60),
}

PROVIDER_SERVERS: dict[LLMProvider, str] = {
    "anthropic": "api.anthropic.com",
    "google": "generativelanguage.googleapis.com",
    "openai": "api.openai.com",
}

MAX_ATTEMPTS = 3

tracer = trace.get_tracer("gen_ai.client")
meter = metrics.get_meter("gen_ai.client")

_token_usage = meter.create_histogram(
    name="gen_ai.client.token.usage",
    description="Tokens used per model call",
    unit="{token}",
)
_operation_duration = meter.create_histogram(
    name="gen_ai.client.operation.duration",
    description="Duration of model calls",
    unit="s",
)
_cost_counter = meter.create_counter(
    name="gen_ai.client.cost",
    description="Model spend in USD",
    unit="usd",
)
_retry_counter = meter.create_counter(
    name="gen_ai.client.retry.count",
    description="Retried model calls",
    unit="{retry}",
)
_fallback_counter = meter.create_counter(
    name="gen_ai.client.fallback.count",
    description="Calls moved to the fallback provider",
    unit="{fallback}",
)

_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def strip_markdown_json(content: str) -> str:
    """Remove markdown code fences some models wrap around JSON output."""
    return _JSON_FENCE.sub("", content.strip()).strip()


def cost_usd(model: str, input_tokens: int, output_tokens: int) -> float:
    input_rate, output_rate = PRICING.get(model, (0.0, 0.0))
    return (input_tokens * input_rate + output_tokens * output_rate) / 1_000_000


@dataclass(frozen=True)
class Completion:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    response_id: str | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class Route:
    """One provider and model to try for a call."""

    provider: LLMProvider
    model: str


ChatFn = Callable[[Route, str, str, float, int], Awaitable[Completion]]


def _anthropic(api_key: str) -> ChatFn:
    from anthropic import AsyncAnthropic

    client = AsyncAnthropic(api_key=api_key)

    async def chat(
        route: Route, system: str, prompt: str, temperature: float, max_tokens: int
    ) -> Completion:
        response = await client.messages.create(
            model=route.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        text = getattr(response.content[0], "text", "") if response.content else ""
        return Completion(
            text=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            response_id=response.id,
            finish_reason=response.stop_reason,
        )

    return chat


def _google(api_key: str) -> ChatFn:
    from google import genai
    from google.genai.types import GenerateContentConfig

    client = genai.Client(api_key=api_key)

    async def chat(
        route: Route, system: str, prompt: str, temperature: float, max_tokens: int
    ) -> Completion:
        response = await client.aio.models.generate_content(
            model=route.model,
            contents=prompt,
            config=GenerateContentConfig(
                system_instruction=system,
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )
        usage = response.usage_metadata
        reason = response.candidates[0].finish_reason if response.candidates else None
        return Completion(
            text=response.text or "",
            model=route.model,
            input_tokens=(usage.prompt_token_count or 0) if usage else 0,
            output_tokens=(usage.candidates_token_count or 0) if usage else 0,
            finish_reason=str(reason) if reason else None,
        )

    return chat


def _openai(api_key: str) -> ChatFn:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)

    async def chat(
        route: Route, system: str, prompt: str, temperature: float, max_tokens: int
    ) -> Completion:
        response = await client.chat.completions.create(
            model=route.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )
        choice = response.choices[0] if response.choices else None
        usage = response.usage
        return Completion(
            text=(choice.message.content if choice else None) or "",
            model=response.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            response_id=response.id,
            finish_reason=choice.finish_reason if choice else None,
        )

    return chat


_CHAT_FACTORIES: dict[LLMProvider, Callable[[str], ChatFn]] = {
    "anthropic": _anthropic,
    "google": _google,
    "openai": _openai,
}


def _log_retry(retry_state: RetryCallState) -> None:
    route: Route = retry_state.args[0]
    error = retry_state.outcome.exception() if retry_state.outcome else None
    error_type = type(error).__name__ if error else "unknown"
    logger.warning(
        "Model call to %s/%s failed with %s, retrying (attempt %d)",
        route.provider,
        route.model,
        error_type,
        retry_state.attempt_number,
    )
    _retry_counter.add(1, {"gen_ai.provider.name": route.provider, "error.type": error_type})


class LLMClient:
    """Routes workflow tasks to the configured providers.

    The primary provider serves each task with the model of the task's tier.
    Each provider call is retried; when the primary still fails the call moves
    once to the fallback provider and model.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._tiers = {
            "fast": settings.llm_model_fast,
            "capable": settings.llm_model_capable,
        }
        self._fallback = Route(settings.fallback_provider, settings.fallback_model)
        self._chats: dict[LLMProvider, ChatFn] = {}

    def routes(self, task: Task) -> list[Route]:
        profile = TASK_PROFILES[task]
        primary = Route(self._settings.llm_provider, self._tiers[profile.tier])
        if primary.provider == self._fallback.provider:
            return [primary]
        return [primary, self._fallback]

    def _chat(self, provider: LLMProvider) -> ChatFn:
        if provider not in self._chats:
            api_key: str = getattr(self._settings, f"{provider}_api_key")
            self._chats[provider] = _CHAT_FACTORIES[provider](api_key)
        return self._chats[provider]

    async def generate(
        self,
        task: Task,
        system: str,
        prompt: str,
        *,
        property_id: str | None = None,
        stage: str | None = None,
    ) -> str:
        """Run ``task`` and return the model's text.

        Raises the last provider error when every route failed.
        """
        profile = TASK_PROFILES[task]
        temperature = (
            profile.temperature
            if profile.temperature is not None
            else self._settings.default_temperature
        )
        primary, *fallbacks = self.routes(task)
        try:
            return await self._complete(
                task, primary, system, prompt, temperature, property_id, stage
            )
        except Exception as e:
            if not fallbacks:
                raise
            fallback = fallbacks[0]
            logger.warning(
                "%s call on %s failed (%s), falling back to %s",
                task,
                primary.provider,
                type(e).__name__,
                fallback.provider,
            )
            _fallback_counter.add(
                1,
                {
                    "gen_ai.provider.name": primary.provider,
                    "gen_ai.fallback.provider": fallback.provider,
                    "llm.task": task.value,
                },
            )
        return await self._complete(
            task, fallback, system, prompt, temperature, property_id, stage
        )

    async def _complete(
        self,
        task: Task,
        route: Route,
        system: str,
        prompt: str,
        temperature: float,
        property_id: str | None,
        stage: str | None,
    ) -> str:
        max_tokens = self._settings.default_max_tokens
        with tracer.start_as_current_span(f"gen_ai.chat {route.model}") as span:
            span.set_attribute("gen_ai.operation.name", "chat")
            span.set_attribute("gen_ai.provider.name", route.provider)
            span.set_attribute("gen_ai.request.model", route.model)
            span.set_attribute("server.address", PROVIDER_SERVERS[route.provider])
            span.set_attribute("gen_ai.request.temperature", temperature)
            span.set_attribute("llm.task", task.value)
            if property_id:
                span.set_attribute("property.id", property_id)
            if stage:
                span.set_attribute("workflow.stage", stage)
            span.add_event(
                "gen_ai.user.message",
                attributes={
                    "gen_ai.prompt": scrub_prompt(prompt)[:1000],
                    "gen_ai.system_instructions": scrub_prompt(system)[:500],
                },
            )

            started = time.perf_counter()
            retrying = AsyncRetrying(
                stop=stop_after_attempt(MAX_ATTEMPTS),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                before_sleep=_log_retry,
                reraise=True,
            )
            completion: Completion = await retrying(
                self._chat(route.provider), route, system, prompt, temperature, max_tokens
            )
            duration = time.perf_counter() - started

            span.set_attribute("gen_ai.response.model", completion.model)
            if completion.response_id:
                span.set_attribute("gen_ai.response.id", completion.response_id)
            if completion.finish_reason:
                span.set_attribute("gen_ai.response.finish_reasons", [completion.finish_reason])
            span.set_attribute("gen_ai.usage.input_tokens", completion.input_tokens)
            span.set_attribute("gen_ai.usage.output_tokens", completion.output_tokens)
            span.add_event(
                "gen_ai.assistant.message",
                attributes={"gen_ai.completion": scrub_completion(completion.text)[:2000]},
            )

            cost = cost_usd(route.model, completion.input_tokens, completion.output_tokens)
            span.set_attribute("gen_ai.usage.cost_usd", cost)
            self._record(task, route, stage, completion, duration, cost)
            return completion.text

    def _record(
        self,
        task: Task,
        route: Route,
        stage: str | None,
        completion: Completion,
        duration: float,
        cost: float,
    ) -> None:
        attrs: dict[str, Any] = {
            "gen_ai.provider.name": route.provider,
            "gen_ai.request.model": route.model,
            "llm.task": task.value,
            "workflow.stage": stage or "none",
        }
        _token_usage.record(completion.input_tokens, {**attrs, "gen_ai.token.type": "input"})
        _token_usage.record(completion.output_tokens, {**attrs, "gen_ai.token.type": "output"})
        _operation_duration.record(duration, attrs)
        _cost_counter.add(cost, attrs)
