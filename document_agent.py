#!/usr/bin/env python3
"""
Interactive document agent: ask for a document in plain language and let the
model read, edit and undo it turn by turn.

Usage:
    python document_agent.py
    python document_agent.py --provider Anthropic --model claude-sonnet-4-20250514 -v

Press Ctrl+C (or Ctrl+D) to exit.
"""

import argparse
import sys

from agent_core import AgentState, agent_stream
from document_tools import ToolKind
from llm_methods import MAX_STEPS, MODEL_PROVIDER, PROVIDERS, REQUEST_TIMEOUT, TextDelta, ToolCall

PROMPT = "What should we do next?"
FAREWELL = "Closing Document Agent. Bye!"

BANNER = [
    "~~ Document Agent ~~",
    "Welcome to the Document Agent! It can help you write a document by editing it as you see fit.",
    "Naturally ask the agent to start writing about anything you want.",
    "Ask the agent at any time to view the document, edit it, or undo any number of edits.",
    "When you are done, press Ctrl+C to exit.",
    "Happily write away!",
]


def render_fragments(turn):
    """Turn step events into the text fragments shown to the user."""
    for event in turn:
        if isinstance(event, TextDelta):
            yield event.text
        elif isinstance(event, ToolCall):
            yield "\n"
            yield ToolKind.from_name(event.name).label
            yield "\n"


def read_message(input_fn=input) -> str:
    message = input_fn(f"\n{PROMPT}\n> ")
    if not isinstance(message, str):
        raise TypeError("Message content must be a string")
    return message


def run_turn(state: AgentState, message: str, write=None) -> list:
    """Stream one turn to `write` and append its messages to the transcript."""
    if write is None:
        write = lambda s: print(s, end="", flush=True)

    turn = agent_stream(state, message)
    for fragment in render_fragments(turn):
        write(fragment)
    write("\n")

    messages = turn.finalize()
    u = state.total_usage
    state.on_status(f"Turn done: {turn.steps} steps, {u['input_tokens']}in/{u['output_tokens']}out, "
                    f"document {len(state.store)} chars, {state.store.depth} edits")
    return messages


def interaction_loop(state: AgentState, input_fn=input, write=None) -> None:
    """Read, respond, repeat. Only an interrupt or a failure ends it."""
    while True:
        message = read_message(input_fn)
        if not message.strip():
            continue
        run_turn(state, message, write=write)


def positive_int(value):
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser():
    parser = argparse.ArgumentParser(description="Write a document together with an LLM agent")
    parser.add_argument("--provider", choices=PROVIDERS, default=MODEL_PROVIDER,
                        help=f"Model provider (default: {MODEL_PROVIDER})")
    parser.add_argument("--model", default=None, help="Model name override (default: from config)")
    parser.add_argument("--max-steps", type=positive_int, default=MAX_STEPS,
                        help=f"Max model steps per turn (default: {MAX_STEPS})")
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT,
                        help=f"Seconds before a model request times out (default: {REQUEST_TIMEOUT})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print status lines to stderr")
    return parser


def main(argv=None, input_fn=input):
    args = build_parser().parse_args(argv)

    if args.verbose:
        on_status = lambda m: print(f"  [status] {m}", file=sys.stderr)
    else:
        on_status = lambda m: None

    state = AgentState(
        model_provider=args.provider,
        model_name=args.model,
        max_steps=args.max_steps,
        request_timeout=args.timeout,
        on_status=on_status,
    )

    for line in BANNER:
        print(line)

    try:
        interaction_loop(state, input_fn=input_fn)
    except (KeyboardInterrupt, EOFError):
        pass
    except Exception as e:
        if args.verbose:
            print(f"\n  FAILED: {e}", file=sys.stderr)
    print(f"\n{FAREWELL}")


if __name__ == "__main__":
    main()
