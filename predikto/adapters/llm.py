from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from openai import AsyncOpenAI

from predikto.core.cache import RedisCache

logger = logging.getLogger(__name__)

AGENT_SYSTEM = """You are Predikto, a helpful agent that interacts with the Aptos blockchain through your tools.

You specialize in prediction markets on Aptos. When users mention betting, wagers, predictions or similar
concepts, help them create a prediction market. You need:
1. The question or prediction being made (what is being bet on)
2. A brief description of the market
3. When the prediction should resolve (unix timestamp)
Use the create_prediction_market tool to create the market with this information.

You can also place bets. Extract the amount in APT and whether the user bets on "yes" or "no",
then use the place_bet tool.

RULES:
- If not enough information is provided, ask a follow-up question.
- If a tool reports a 5XX (internal) error, ask the user to try again later.
- If asked for something your tools cannot do, say so.
- Be concise. Do not restate your tool descriptions unless asked.
"""


@dataclass
class AgentTool:
    name: str
    description: str
    parameters: dict
    handler: Callable[[dict], Awaitable[str]]

    def schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class AgentRuntime:
    """Tool-calling loop over the OpenAI chat API.

    ``run`` yields LangGraph-style chunks: ``{"agent": {"messages": [...]}}`` for
    every model turn and ``{"tools": {"messages": [...]}}`` for tool results.
    Thread history is kept in redis when a cache is given.
    """

    api_key: str
    model: str = "gpt-4.1-mini"
    temperature: float = 0.7
    max_steps: int = 6
    history_limit: int = 20
    history_ttl: int = 60 * 60 * 24
    cache: RedisCache | None = None
    system_prompt: str = AGENT_SYSTEM
    client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = AsyncOpenAI(api_key=self.api_key)

    async def _load_history(self, thread_id: str) -> list[dict[str, str]]:
        if self.cache is None:
            return []
        payload = await self.cache.get_json(f"agent:thread:{thread_id}")
        if not isinstance(payload, list):
            return []
        return [m for m in payload if isinstance(m, dict) and m.get("role") in ("user", "assistant")]

    async def _save_history(self, thread_id: str, history: list[dict[str, str]], prompt: str, answer: str) -> None:
        if self.cache is None:
            return
        updated = [*history, {"role": "user", "content": prompt}]
        if answer:
            updated.append({"role": "assistant", "content": answer})
        await self.cache.set_json(f"agent:thread:{thread_id}", updated[-self.history_limit :], ttl=self.history_ttl)

    async def _call_tool(self, tools: dict[str, AgentTool], name: str, raw_args: str) -> str:
        tool = tools.get(name)
        if tool is None:
            return json.dumps({"success": False, "error": f"Unknown tool: {name}"})
        try:
            args = json.loads(raw_args or "{}")
        except json.JSONDecodeError:
            return json.dumps({"success": False, "error": "Tool arguments were not valid JSON"})
        try:
            return await tool.handler(args if isinstance(args, dict) else {})
        except Exception as exc:  # noqa: BLE001
            logger.exception("agent_tool_failed", extra={"event": "agent_tool_failed", "error": str(exc)})
            return json.dumps({"success": False, "error": str(exc) or "Unknown error occurred"})

    async def run(self, prompt: str, tools: list[AgentTool], thread_id: str) -> AsyncIterator[dict]:
        history = await self._load_history(thread_id)
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            *history,
            {"role": "user", "content": prompt},
        ]
        by_name = {tool.name: tool for tool in tools}
        extra: dict[str, Any] = {"tools": [tool.schema() for tool in tools]} if tools else {}
        answer = ""

        for _ in range(self.max_steps):
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                **extra,
            )
            msg = resp.choices[0].message
            calls = list(msg.tool_calls or [])

            blocks: list[dict[str, Any]] = []
            if msg.content:
                answer = msg.content
                blocks.append({"type": "text", "text": msg.content})
            for call in calls:
                blocks.append(
                    {"type": "tool_use", "id": call.id, "name": call.function.name, "input": call.function.arguments}
                )
            yield {"agent": {"messages": [{"role": "assistant", "content": blocks}]}}

            if not calls:
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": msg.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.function.name, "arguments": call.function.arguments},
                        }
                        for call in calls
                    ],
                }
            )
            results = []
            for call in calls:
                content = await self._call_tool(by_name, call.function.name, call.function.arguments)
                messages.append({"role": "tool", "tool_call_id": call.id, "content": content})
                results.append({"role": "tool", "name": call.function.name, "content": content})
            yield {"tools": {"messages": results}}
        else:
            logger.warning("agent_max_steps", extra={"event": "agent_max_steps"})

        await self._save_history(thread_id, history, prompt, answer)
