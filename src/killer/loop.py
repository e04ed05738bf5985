"""
Agent Loop - The iteration controller.

This is the state machine that drives one agent run:

1. INIT: seed the conversation with the system context and the query
2. CALL_MODEL: compress if the budget says so, then call the model
3. TOOL_CALLS: run each requested tool in order, append one Tool message
   per call, go back to 2
4. STOP: a final answer ends the run, unless the gate asks for a human
   turn (AWAIT_USER), in which case the reply is appended and we go back to 2

Every pass through CALL_MODEL counts as one iteration. Exceeding
max_iterations, a transport error, an unexpected finish reason or a
context that cannot be compressed under the ceiling all end in ERROR.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from killer.builtin import builtin_tools
from killer.config import AgentConfig, LoopConfig
from killer.confirmation import ConfirmationGate
from killer.context import CompressionError, ContextBudgetManager, wire_length
from killer.invoker import ToolInvoker, format_tool_content
from killer.llm import ChatResponse, LLMClient, LLMError
from killer.session import AgentSession, ConversationError
from killer.tasks import TaskStatusReader
from killer.tools import ScriptToolDiscovery, ToolRegistry, ToolSource
from killer.types import LoopPhase, Role, ToolCall

logger = logging.getLogger(__name__)

EXIT_WORDS = frozenset({"exit", "quit"})


@dataclass
class StepResult:
    """Result of a single iteration of the loop."""
    iteration: int
    phase: LoopPhase
    content: str | None = None
    tool_calls_made: int = 0
    prompt_tokens: int = 0
    compressed: bool = False


@dataclass
class LoopResult:
    """Final result of running the agent loop."""
    success: bool
    response: str | None
    steps_taken: int
    step_results: list[StepResult] = field(default_factory=list)
    error: str | None = None
    stopped_reason: str = "completed"
    tokens_used: int = 0


class AgentLoop:
    """
    Drives one AgentSession from the user's query to a terminal phase.

    The loop is the only writer of the session: conversation, token budget
    and confirmation flags are never touched from anywhere else.
    """

    def __init__(
        self,
        session: AgentSession,
        llm: LLMClient,
        registry: ToolRegistry,
        invoker: ToolInvoker,
        context_manager: ContextBudgetManager,
        gate: ConfirmationGate | None = None,
        config: LoopConfig | None = None,
        task_status: TaskStatusReader | None = None,
        system_prompt: str | None = None,
        input_fn: Callable[[str], str] = input,
        max_tool_output: int = 100_000,
    ) -> None:
        self.session = session
        self.llm = llm
        self.registry = registry
        self.invoker = invoker
        self.context_manager = context_manager
        self.gate = gate or ConfirmationGate(session.confirmation)
        self.config = config or LoopConfig.from_env()
        self.task_status = task_status
        self.system_prompt = system_prompt
        self.input_fn = input_fn
        self.max_tool_output = max_tool_output
        self.phase = LoopPhase.INIT
        self._final_response: str | None = None
        self._error: str | None = None
        self._stopped_reason = "completed"

    @classmethod
    def create(
        cls,
        config: AgentConfig | None = None,
        llm: LLMClient | None = None,
        sources: Iterable[ToolSource] | None = None,
        system_prompt: str | None = None,
        input_fn: Callable[[str], str] = input,
    ) -> "AgentLoop":
        """
        Build a fully wired loop from configuration.

        Tools come from ``sources`` when given, otherwise from the built-ins
        plus the script tools directory if one is configured.
        """
        config = config or AgentConfig.from_env()
        if llm is None:
            config.llm.require_api_key()
            llm = LLMClient(config.llm)

        registry = ToolRegistry()
        if sources is None:
            sources = [builtin_tools]
            if config.tools.tools_dir:
                sources.append(ScriptToolDiscovery(config.tools.tools_dir))
        registry.discover(*sources)
        logger.info(f"Loaded {len(registry)} tools: {', '.join(registry.tool_names)}")

        context_manager = ContextBudgetManager(config.context, llm_client=llm)
        session = AgentSession(budget=context_manager.budget)

        return cls(
            session=session,
            llm=llm,
            registry=registry,
            invoker=ToolInvoker(registry, config.tools),
            context_manager=context_manager,
            gate=ConfirmationGate(session.confirmation),
            config=config.loop,
            task_status=TaskStatusReader(config.tools.task_file),
            system_prompt=system_prompt,
            input_fn=input_fn,
            max_tool_output=config.tools.max_output_chars,
        )

    def run(self, query: str) -> LoopResult:
        """
        Run the loop until it reaches STOP or ERROR.

        Args:
            query: The user's request

        Returns:
            LoopResult with the final answer or the reason for failure
        """
        conversation = self.session.conversation
        if self.system_prompt and len(conversation) == 0:
            conversation.add_system(self.system_prompt)
        conversation.add_user(query)
        logger.info(f"Query: {query}")

        self.phase = LoopPhase.CALL_MODEL
        step_results: list[StepResult] = []

        while not self.phase.is_terminal:
            self.session.iteration += 1
            if self.session.iteration > self.config.max_iterations:
                logger.warning(f"Maximum iterations ({self.config.max_iterations}) reached")
                self._fail("Max iterations exceeded", "max_iterations_exceeded")
                break

            logger.info(f"Iteration {self.session.iteration}/{self.config.max_iterations}")
            try:
                step_results.append(self._execute_step())
            except LLMError as e:
                logger.error(f"API call failed: {e}")
                self._fail(str(e), "llm_error")
            except CompressionError as e:
                logger.error(f"Context budget exhausted: {e}")
                self._fail(str(e), "context_exhausted")
            except ConversationError as e:
                logger.error(f"Invalid model response: {e}")
                self._fail(str(e), "invalid_response")

        steps_taken = min(self.session.iteration, self.config.max_iterations)
        if self.phase == LoopPhase.ERROR:
            return LoopResult(
                success=False,
                response=self._final_response,
                steps_taken=steps_taken,
                step_results=step_results,
                error=self._error,
                stopped_reason=self._stopped_reason,
                tokens_used=self.session.budget.cumulative_used,
            )

        logger.info("Task completed successfully")
        return LoopResult(
            success=True,
            response=self._final_response,
            steps_taken=steps_taken,
            step_results=step_results,
            stopped_reason=self._stopped_reason,
            tokens_used=self.session.budget.cumulative_used,
        )

    def _fail(self, error: str, reason: str) -> None:
        self.phase = LoopPhase.ERROR
        self._error = error
        self._stopped_reason = reason

    def _extra_messages(self) -> list[dict[str, str]]:
        # Ephemeral: sent with each call, never stored in the conversation.
        if self.task_status is None:
            return []
        summary = self.task_status.summary()
        if not summary:
            return []
        return [{"role": Role.SYSTEM.value, "content": summary}]

    def _execute_step(self) -> StepResult:
        """One CALL_MODEL pass plus the handling of its response."""
        conversation = self.session.conversation
        schemas = self.registry.schemas()
        extra = self._extra_messages()
        extra_chars = wire_length(schemas) + wire_length(extra)

        compressed = False
        if self.context_manager.should_compress():
            logger.info(
                f"Context at ~{self.session.budget.current_context_tokens} tokens "
                f"({self.session.budget.utilization:.0%} of limit), compressing"
            )
            self.context_manager.apply(conversation, extra_chars)
            self.session.compressions += 1
            compressed = True

        sent_chars = conversation.serialized_length()
        response = self.llm.chat(conversation.to_wire() + extra, tools=schemas or None)
        self.session.api_calls += 1

        prompt_tokens = 0
        if response.usage:
            prompt_tokens = response.usage.prompt_tokens
            self.context_manager.record_usage(
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
                sent_chars=sent_chars,
            )
        logger.debug(f"Finish reason: {response.finish_reason}")

        if response.finish_reason == "stop":
            self._handle_stop(response, extra_chars)
            return StepResult(
                iteration=self.session.iteration,
                phase=self.phase,
                content=response.content,
                prompt_tokens=prompt_tokens,
                compressed=compressed,
            )

        if response.finish_reason == "tool_calls":
            if not response.has_tool_calls:
                self._fail(
                    "No tool_calls found in response despite finish_reason=tool_calls",
                    "unexpected_response",
                )
            else:
                self._handle_tool_calls(response, extra_chars)
            return StepResult(
                iteration=self.session.iteration,
                phase=self.phase,
                content=response.content or None,
                tool_calls_made=len(response.tool_calls),
                prompt_tokens=prompt_tokens,
                compressed=compressed,
            )

        logger.warning(f"Unexpected finish reason: {response.finish_reason}")
        self._fail(f"Unexpected finish reason: {response.finish_reason}", "unexpected_response")
        return StepResult(
            iteration=self.session.iteration,
            phase=self.phase,
            content=response.content or None,
            prompt_tokens=prompt_tokens,
            compressed=compressed,
        )

    def _handle_stop(self, response: ChatResponse, extra_chars: int) -> None:
        conversation = self.session.conversation
        content = response.content
        if content:
            logger.info(f"Agent: {content}")
            conversation.add_assistant(content)
            self.context_manager.update(conversation, extra_chars)
        self._final_response = content

        if not self.gate.should_pause(content, self.config.interactive):
            self.phase = LoopPhase.STOP
            return

        self.phase = LoopPhase.AWAIT_USER
        reply = self._read_user_input()
        if reply is None:
            logger.info("Session ended by user")
            self.phase = LoopPhase.STOP
            self._stopped_reason = "user_exit"
            return

        authorization = self.gate.handle_reply(reply)
        conversation.add_user(reply)
        if authorization is not None:
            conversation.append(authorization)
        self.context_manager.update(conversation, extra_chars)
        self.phase = LoopPhase.CALL_MODEL

    def _read_user_input(self) -> str | None:
        """Prompt until a non-empty reply. None means EOF or an exit word."""
        while True:
            try:
                reply = self.input_fn("> ")
            except EOFError:
                return None
            reply = reply.strip()
            if reply.lower() in EXIT_WORDS:
                return None
            if reply:
                return reply

    def _handle_tool_calls(self, response: ChatResponse, extra_chars: int) -> None:
        conversation = self.session.conversation
        conversation.add_assistant(response.content or None, response.tool_calls)
        self.gate.begin_tool_cycle()
        self.phase = LoopPhase.TOOL_CALLS

        logger.info(f"Processing {len(response.tool_calls)} tool call(s)")
        # Sequential on purpose: later calls may depend on earlier results.
        for call in response.tool_calls:
            self._execute_tool_call(call)

        self.context_manager.update(conversation, extra_chars)
        self.phase = LoopPhase.CALL_MODEL

    def _execute_tool_call(self, call: ToolCall) -> None:
        arguments = call.arguments
        command = None
        destructive = False
        descriptor = self.registry.get(call.name)
        if descriptor is not None and descriptor.tool.command_argument:
            command = str(arguments.get(descriptor.tool.command_argument, ""))
            destructive = self.invoker.policy.is_destructive(command)

        arguments = self.gate.authorize(arguments, destructive)
        logger.info(f"Calling tool: {call.name}")
        result = self.invoker.invoke(call.name, arguments)
        self.gate.observe(result, command)

        self.session.conversation.add_tool_result(
            call.id,
            call.name,
            format_tool_content(result, self.max_tool_output),
        )
