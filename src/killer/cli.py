"""
Command-line entry point.

Usage:
    killer [options] QUERY
    killer [options] PROMPT_NAME QUERY
    killer --prompt PROMPT_NAME [options] QUERY
    killer list-tools
    killer list-prompts
"""

import argparse
import logging
import sys

from killer import __version__
from killer.builtin import builtin_tools
from killer.config import AgentConfig, ConfigError, load_env_files
from killer.loop import AgentLoop
from killer.prompts import PromptLibrary, PromptNotFoundError
from killer.tools import ScriptToolDiscovery, ToolRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(levelname)s] %(message)s"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the root logger for terminal use."""
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING if not verbose else logging.DEBUG)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="killer",
        description="Command-line AI agent that calls tools until the task is done",
    )
    parser.add_argument("args", nargs="+", metavar="ARG",
                        help="QUERY, PROMPT_NAME QUERY, list-tools or list-prompts")
    parser.add_argument("--model", help="Model name (overrides KILLER_MODEL)")
    parser.add_argument("--api-url", help="API base URL (overrides KILLER_API_BASE)")
    parser.add_argument("--max-iterations", type=int, help="Maximum model calls for this run")
    parser.add_argument("--prompt", metavar="NAME", help="Prompt template to load as system context")
    parser.add_argument("--interactive", action="store_true",
                        help="Wait for further input after every answer")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(config: AgentConfig, args: argparse.Namespace) -> AgentConfig:
    if args.model:
        config.llm.model = args.model
    if args.api_url:
        config.llm.base_url = args.api_url
    if args.max_iterations is not None:
        if args.max_iterations < 1:
            raise ConfigError("--max-iterations must be at least 1")
        config.loop.max_iterations = args.max_iterations
    if args.interactive:
        config.loop.interactive = True
    return config


def list_tools(config: AgentConfig) -> int:
    registry = ToolRegistry()
    sources = [builtin_tools]
    if config.tools.tools_dir:
        sources.append(ScriptToolDiscovery(config.tools.tools_dir))
    registry.discover(*sources)
    print("Available tools:")
    for name in registry.tool_names:
        print(f"  - {name}")
    return 0


def list_prompts(library: PromptLibrary) -> int:
    names = library.names()
    if not names:
        print(f"No prompts found in {library.prompts_dir}")
        return 0
    print("Available prompts:")
    for name in names:
        print(f"  - {name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the CLI. Returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.quiet)

    load_env_files()
    try:
        config = apply_overrides(AgentConfig.from_env(), args)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    library = PromptLibrary(config.loop.prompts_dir)
    positional = args.args

    if positional == ["list-tools"]:
        return list_tools(config)
    if positional == ["list-prompts"]:
        return list_prompts(library)

    prompt_name = args.prompt
    if len(positional) == 2 and prompt_name is None:
        prompt_name, query = positional
    elif len(positional) == 1:
        query = positional[0]
    else:
        parser.error("expected QUERY or PROMPT_NAME QUERY")

    system_prompt = None
    if prompt_name:
        try:
            system_prompt = library.load(prompt_name)
        except PromptNotFoundError as e:
            logger.error(str(e))
            list_prompts(library)
            return 1

    try:
        loop = AgentLoop.create(config, system_prompt=system_prompt)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    logger.info("Starting AI Agent")
    try:
        result = loop.run(query)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    finally:
        loop.llm.close()

    if not result.success:
        logger.error(f"Agent failed: {result.error}")
        return 1

    if result.response:
        print(result.response)
    logger.info(
        f"Done in {result.steps_taken} iteration(s), {result.tokens_used} tokens used"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
