#!/usr/bin/env python3
"""
Name: xargs
Description: construct argument list(s) and execute utility
Author: Gurusamy Sarathy, gsar@umich.edu (Original Perl Author)
License: perl

A Python port of the 'xargs' utility.

Arguments are read from standard input, separated by blanks and newlines
(or by NUL bytes with -0), and appended to the given utility, which is run
as many times as needed to use up the input. Each command line is kept
under the system's argument size limit. If the utility exits with status
255, no further commands are run.
"""

import sys
import os
import argparse
import struct
import subprocess
import itertools
from collections import namedtuple
from enum import Enum

# Each argv and envp entry costs a pointer in the new process image.
POINTER_SIZE = struct.calcsize('P')

# Room left for the utility to grow its own environment and arguments.
HEADROOM = 4096

# Assumed when sysconf can't report ARG_MAX.
FALLBACK_ARG_MAX = 131072

READ_SIZE = 65536
TTY_PATH = '/dev/tty'


class XargsError(Exception):
    """A fatal condition that ends the whole run."""
    exit_code = 1


class ArgumentTooLong(XargsError):
    pass


class TerminalUnavailable(XargsError):
    pass


# --- Tokenizer ---

class StopSignal:
    """Stands in for the -E end-of-file string in the token stream."""
    def __repr__(self):
        return 'STOP'

STOP = StopSignal()


def _split_null(stream):
    """Yields NUL-terminated tokens, empty ones included."""
    pending = b''
    while True:
        chunk = stream.read1(READ_SIZE)
        if not chunk:
            break
        *tokens, pending = (pending + chunk).split(b'\0')
        yield from tokens
    # The last token doesn't need a terminator.
    if pending:
        yield pending


def tokenize(stream, null=False, lines=False, stop=None):
    """
    Lazily splits a binary stream into tokens.

    With null=True a token runs up to the next NUL byte and is taken as-is.
    Otherwise tokens are separated by whitespace, or with lines=True each
    non-blank line (trimmed) is one token. In those two modes a token equal
    to `stop` is replaced by STOP and nothing after it is read.
    """
    if null:
        yield from _split_null(stream)
        return

    for line in stream:
        # bytes.split() with no separator splits on runs of ASCII whitespace.
        words = [line.strip()] if lines else line.split()
        for word in words:
            # An argument can't hold a NUL, so it ends there.
            word = word.split(b"\0", 1)[0]
            if not word:
                continue
            if stop and word == stop:
                yield STOP
                return
            yield word


# --- Batch Accumulator ---

class AddResult(Enum):
    ACCEPTED = 'accepted'
    LIMIT_REACHED = 'limit reached'
    STOPPED = 'stopped'
    TOO_LARGE = 'too large'


# size_limit: bytes allowed per command line
# base_bytes: what the fixed command already costs
# max_entries: tokens per batch, 0 for no limit
# overhead: extra bytes charged per entry
# multiplier: how many times each token lands in the command line
BatchLimits = namedtuple(
    'BatchLimits',
    ['size_limit', 'base_bytes', 'max_entries', 'overhead', 'multiplier'],
)


def argument_cost(arg, overhead, multiplier=1):
    """Bytes one argument takes up: its text, a NUL and the overhead."""
    return len(arg) * multiplier + 1 + overhead


def command_bytes(template, overhead):
    """Bytes taken up by the fixed part of every command line."""
    return sum(argument_cost(arg, overhead) for arg in template)


def environ_bytes():
    """Bytes the current environment takes up in a new process image."""
    return sum(len(name) + len(value) + 2 + POINTER_SIZE
               for name, value in os.environb.items())


def default_size_limit():
    """
    The command line size to aim for when -s isn't given: ARG_MAX less
    the current environment, less some headroom for the utility itself.
    """
    try:
        arg_max = os.sysconf('SC_ARG_MAX')
    except (ValueError, OSError):
        arg_max = -1
    if arg_max <= 0:
        arg_max = FALLBACK_ARG_MAX
    return arg_max - environ_bytes() - HEADROOM


class BatchAccumulator:
    """Collects the tokens for a single command line."""

    def __init__(self, limits):
        self.limits = limits
        self.tokens = []
        self.bytes = limits.base_bytes
        self.stopped = False

    def __len__(self):
        return len(self.tokens)

    def add_token(self, token):
        """
        Offers one token to the batch. On LIMIT_REACHED the token is not
        taken and belongs at the head of the next batch.
        """
        if token is STOP:
            self.stopped = True
            return AddResult.STOPPED

        limits = self.limits
        cost = argument_cost(token, limits.overhead, limits.multiplier)

        # Doesn't fit even as the only entry, so no batch will ever hold it.
        if limits.base_bytes + cost > limits.size_limit:
            return AddResult.TOO_LARGE
        if limits.max_entries and len(self.tokens) >= limits.max_entries:
            return AddResult.LIMIT_REACHED
        if self.bytes + cost > limits.size_limit:
            return AddResult.LIMIT_REACHED

        self.tokens.append(token)
        self.bytes += cost
        return AddResult.ACCEPTED


# --- Command Builder ---

def build_command(template, tokens, replace=None):
    """
    Returns the argument vector for one run: the template followed by the
    batch's tokens, or with `replace`, the template with every occurrence
    of it swapped for the batch's single token.
    """
    if replace is not None and tokens:
        return [arg.replace(replace, tokens[0]) for arg in template]
    return template + list(tokens)


# --- Process Runner ---

class Outcome(Enum):
    NORMAL_ZERO = 'normal zero'
    NORMAL_NONZERO = 'normal nonzero'
    FATAL_EXEC = 'fatal exec'
    SENTINEL_ABORT = 'sentinel abort'
    KILLED_BY_SIGNAL = 'killed by signal'


ExecResult = namedtuple('ExecResult', ['outcome', 'code'])


def classify(returncode):
    """
    Maps a subprocess return code onto an ExecResult. Negative codes are
    subprocess's way of reporting death by signal.
    """
    if returncode < 0:
        return ExecResult(Outcome.KILLED_BY_SIGNAL, -returncode)
    if returncode == 0:
        return ExecResult(Outcome.NORMAL_ZERO, 0)
    if returncode in (126, 127):
        return ExecResult(Outcome.FATAL_EXEC, returncode)
    if returncode == 255:
        return ExecResult(Outcome.SENTINEL_ABORT, returncode)
    return ExecResult(Outcome.NORMAL_NONZERO, returncode)


def run_command(argv, tty_stdin=False):
    """
    Runs one command and waits for it. Its standard input comes from the
    null device, or from the terminal with tty_stdin; stdout and stderr
    are inherited.
    """
    program_name = os.path.basename(sys.argv[0])
    name = os.fsdecode(argv[0])
    source = TTY_PATH if tty_stdin else os.devnull

    try:
        stdin = open(source, 'rb')
    except OSError as e:
        if tty_stdin:
            raise TerminalUnavailable(f"can't open {source}: {e.strerror}")
        raise XargsError(f"can't open {source}: {e.strerror}")

    with stdin:
        try:
            proc = subprocess.run(argv, stdin=stdin)
        except FileNotFoundError:
            print(f"{program_name}: {name}: No such file or directory", file=sys.stderr)
            return ExecResult(Outcome.FATAL_EXEC, 127)
        except OSError as e:
            # Found but couldn't be run (permissions, bad format, ...).
            print(f"{program_name}: {name}: {e.strerror}", file=sys.stderr)
            return ExecResult(Outcome.FATAL_EXEC, 126)

    return classify(proc.returncode)


def fold_status(status, result):
    """
    Combines the run's exit status so far with one command's result.
    Only FATAL_EXEC and SENTINEL_ABORT can lower it, and both end the run.
    """
    if result.outcome is Outcome.FATAL_EXEC:
        return result.code
    if result.outcome is Outcome.SENTINEL_ABORT:
        return 124
    if result.outcome is Outcome.KILLED_BY_SIGNAL:
        return max(status, 127)
    if result.outcome is Outcome.NORMAL_NONZERO and 1 <= result.code <= 125:
        return max(status, 123)
    return status


# --- Loop Controller ---

class Xargs:
    """
    Holds the fixed command and limits for a run and drives the
    read, build, run cycle until the input is used up.
    """

    def __init__(self, args, stream):
        self.args = args
        self.stream = stream
        self.program_name = os.path.basename(sys.argv[0])
        self.exit_status = 0
        self.tty = None

        # With no utility given, echo the arguments.
        self.template = [os.fsencode(arg) for arg in (args.command or ['echo'])]

        self.replace = None
        if args.replace is not None:
            self.replace = os.fsencode(args.replace)
        self.stop = os.fsencode(args.eof_str) if args.eof_str else None

        # -I reads whole lines and never runs the bare command.
        if args.run_if_empty:
            self.skip_empty = False
        else:
            self.skip_empty = args.no_run_if_empty or self.replace is not None

        # An explicit -s is taken at its word, so no pointer overhead.
        if args.size is not None:
            size_limit, overhead = args.size, 0
        else:
            size_limit, overhead = default_size_limit(), POINTER_SIZE

        max_entries = args.max_args or 0
        multiplier = 1
        if self.replace is not None:
            max_entries = 1
            multiplier = max(1, sum(arg.count(self.replace) for arg in self.template))

        base_bytes = command_bytes(self.template, overhead)
        if base_bytes > size_limit:
            raise ArgumentTooLong("command too long")

        self.limits = BatchLimits(size_limit, base_bytes, max_entries, overhead, multiplier)

    def run(self):
        """Runs commands until the input is used up. Returns the exit status."""
        tokens = tokenize(self.stream, null=self.args.null,
                          lines=self.replace is not None, stop=self.stop)
        leftover = None
        done = False
        invoked = False

        try:
            while leftover is not None or not done:
                # --- 1. Fill a batch ---
                batch = BatchAccumulator(self.limits)
                carried = [leftover] if leftover is not None else []
                leftover = None

                for token in itertools.chain(carried, tokens):
                    result = batch.add_token(token)
                    if result is AddResult.ACCEPTED:
                        continue
                    if result is AddResult.TOO_LARGE:
                        raise ArgumentTooLong("argument too long")
                    if result is AddResult.LIMIT_REACHED:
                        leftover = token
                    else:
                        done = True
                    break
                else:
                    done = True

                # --- 2. Decide whether there's anything to run ---
                # POSIX runs the bare command once on empty input.
                if not batch.tokens and (invoked or self.skip_empty):
                    break
                invoked = True

                # --- 3. Run it ---
                command = build_command(self.template, batch.tokens, self.replace)
                if not self.announce(command):
                    continue

                result = run_command(command, self.args.open_tty)
                self.exit_status = fold_status(self.exit_status, result)

                if result.outcome is Outcome.FATAL_EXEC:
                    break
                if result.outcome is Outcome.SENTINEL_ABORT:
                    print(f"{self.program_name}: {os.fsdecode(command[0])}: "
                          "exited with status 255; aborting", file=sys.stderr)
                    break
        finally:
            if self.tty is not None:
                self.tty.close()
                self.tty = None

        return self.exit_status

    def announce(self, command):
        """
        Handles -t and -p for one command line. Returns False if the user
        declined to run it.
        """
        if not (self.args.trace or self.args.interactive):
            return True

        line = ' '.join(os.fsdecode(arg) for arg in command)
        if not self.args.interactive:
            print(line, file=sys.stderr)
            return True

        print(f"{line} ?...", end='', file=sys.stderr, flush=True)
        if self.tty is None:
            try:
                self.tty = open(TTY_PATH)
            except OSError as e:
                raise TerminalUnavailable(f"can't open {TTY_PATH}: {e.strerror}")

        # Anything starting with 'y' or 'Y' is a yes; EOF is a no.
        answer = self.tty.readline().lstrip(' \t')
        return answer[:1] in ('y', 'Y')


def positive_int(value):
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number '{value}'")
    if number < 1:
        raise argparse.ArgumentTypeError(f"number must be > 0: '{value}'")
    return number


def non_negative_int(value):
    """argparse type for sizes, which may be zero."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"number must be >= 0: '{value}'")
    return number


def build_parser():
    parser = argparse.ArgumentParser(
        description="Run a command line one or more times, appending arguments from stdin.",
        usage="%(prog)s [-0oprt] [-E eofstr] [-I replstr] [-n number] [-s size] "
              "[--run-if-empty] [utility [argument ...]]"
    )
    parser.add_argument('-0', dest='null', action='store_true',
                        help='arguments are NUL terminated, no whitespace processing')
    parser.add_argument('-E', dest='eof_str', metavar='eofstr',
                        help='stop reading input at this argument')
    parser.add_argument('-I', dest='replace', metavar='replstr',
                        help='run once per input line, replacing replstr in the arguments')
    parser.add_argument('-n', dest='max_args', type=positive_int, metavar='number',
                        help='max number of arguments per command')
    parser.add_argument('-o', dest='open_tty', action='store_true',
                        help="open /dev/tty for the command's stdin (default /dev/null)")
    parser.add_argument('-p', dest='interactive', action='store_true',
                        help='prompt for y/n from /dev/tty before running each command')
    parser.add_argument('-s', dest='size', type=non_negative_int, metavar='size',
                        help='max size in bytes of each command line')
    parser.add_argument('-t', dest='trace', action='store_true',
                        help='print each command line to stderr before running it')

    # These two settle what happens on empty input.
    empty_group = parser.add_mutually_exclusive_group()
    empty_group.add_argument('-r', dest='no_run_if_empty', action='store_true',
                             help="don't run the command if the input is empty")
    empty_group.add_argument('--run-if-empty', dest='run_if_empty', action='store_true',
                             help='run the command once even if the input is empty')

    parser.add_argument('command', nargs=argparse.REMAINDER,
                        help='The utility to run followed by its initial arguments.')
    return parser


def main(argv=None):
    """Parses arguments and runs the xargs loop over standard input."""
    parser = build_parser()
    args = parser.parse_args(argv)
    program_name = os.path.basename(sys.argv[0])

    # The end-of-file string only means something for whitespace input.
    if args.null and args.eof_str:
        parser.error("-0 and -E can't be used together")
    if args.replace == '':
        parser.error("-I needs a non-empty replace string")

    try:
        exit_status = Xargs(args, sys.stdin.buffer).run()
    except XargsError as e:
        print(f"{program_name}: {e}", file=sys.stderr)
        sys.exit(e.exit_code)

    sys.exit(exit_status)

if __name__ == "__main__":
    main()
