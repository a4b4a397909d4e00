from agentic_coder.infrastructure.terminal.process import ShellProcess, exit_details_for
from agentic_coder.infrastructure.terminal.registry import Terminal, TerminalRegistry, compress_output

__all__ = ["ShellProcess", "Terminal", "TerminalRegistry", "compress_output", "exit_details_for"]
