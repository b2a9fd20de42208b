"""
Multiplexer control-plane capability and its WezTerm CLI adapter
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from .executor import CommandExecutor
from .exceptions import MultiplexerError
from .timing import CancelToken


logger = logging.getLogger(__name__)


@dataclass
class PaneInfo:
    """One entry of `list --format json`"""
    pane_id: int
    window_id: int = 0
    tab_id: int = 0
    title: str = ''
    cwd: str = ''
    is_active: bool = False
    top_row: int = 0
    left_col: int = 0
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaneInfo':
        """Create from a list entry, ignoring fields we do not track"""
        return cls(
            pane_id=int(data['pane_id']),
            window_id=int(data.get('window_id', 0)),
            tab_id=int(data.get('tab_id', 0)),
            title=data.get('title') or '',
            cwd=data.get('cwd') or '',
            is_active=bool(data.get('is_active', False)),
            top_row=int(data.get('top_row', 0)),
            left_col=int(data.get('left_col', 0)),
        )
    
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Multiplexer(ABC):
    """Narrow capability interface over the terminal multiplexer"""
    
    @abstractmethod
    def spawn(self, cwd: Optional[str], program: List[str], new_window: bool = False,
              from_pane: Optional[int] = None,
              token: Optional[CancelToken] = None) -> int:
        """Create a pane attached to the running server; return its pane id
        
        Without `new_window` the pane opens as a new tab in the window of
        `from_pane` (or of the focused pane).
        """
    
    @abstractmethod
    def split_pane(self, program: List[str], direction: str = 'right',
                   from_pane: Optional[int] = None, cwd: Optional[str] = None,
                   token: Optional[CancelToken] = None) -> int:
        """Split an existing pane; return the new pane id"""
    
    @abstractmethod
    def list_panes(self, token: Optional[CancelToken] = None) -> List[PaneInfo]:
        """List every pane known to the server"""
    
    @abstractmethod
    def get_text(self, pane_id: int, start_line: Optional[int] = None,
                 end_line: Optional[int] = None,
                 token: Optional[CancelToken] = None) -> str:
        """Read rendered text from a pane"""
    
    @abstractmethod
    def send_text(self, pane_id: int, text: str, execute: bool = False,
                  token: Optional[CancelToken] = None):
        """Inject keystrokes; `execute` appends a line terminator"""
    
    @abstractmethod
    def kill_pane(self, pane_id: int, token: Optional[CancelToken] = None):
        """Close a pane"""
    
    @abstractmethod
    def activate_pane(self, pane_id: int, token: Optional[CancelToken] = None):
        """Focus a pane"""
    
    @abstractmethod
    def start_standalone(self, cwd: Optional[str], program: List[str],
                         token: Optional[CancelToken] = None) -> int:
        """Start a detached top-level session; return its OS pid"""


class WeztermMultiplexer(Multiplexer):
    """Multiplexer driven through `wezterm cli`, via a CommandExecutor"""
    
    SPLIT_DIRECTIONS = ('left', 'right', 'top', 'bottom')
    
    def __init__(self, executor: CommandExecutor):
        self.executor = executor
    
    def spawn(self, cwd, program, new_window=False, from_pane=None, token=None) -> int:
        args = ['spawn']
        if new_window:
            args.append('--new-window')
        elif from_pane is not None:
            args.extend(['--pane-id', str(from_pane)])
        if cwd:
            args.extend(['--cwd', str(cwd)])
        args.append('--')
        args.extend(program)
        return self._parse_pane_id(self.executor.execute(args, token=token), args)
    
    def split_pane(self, program, direction='right', from_pane=None, cwd=None,
                   token=None) -> int:
        if direction not in self.SPLIT_DIRECTIONS:
            raise ValueError(f"Unknown split direction: {direction}")
        
        args = ['split-pane', f'--{direction}']
        if from_pane is not None:
            args.extend(['--pane-id', str(from_pane)])
        if cwd:
            args.extend(['--cwd', str(cwd)])
        args.append('--')
        args.extend(program)
        return self._parse_pane_id(self.executor.execute(args, token=token), args)
    
    def list_panes(self, token=None) -> List[PaneInfo]:
        args = ['list', '--format', 'json']
        output = self.executor.execute(args, token=token)
        try:
            entries = json.loads(output or '[]')
            return [PaneInfo.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError) as e:
            raise MultiplexerError(f"Failed to parse pane list: {e}", args, output)
    
    def get_text(self, pane_id, start_line=None, end_line=None, token=None) -> str:
        args = ['get-text', '--pane-id', str(pane_id)]
        if start_line is not None:
            args.extend(['--start-line', str(start_line)])
        if end_line is not None:
            args.extend(['--end-line', str(end_line)])
        return self.executor.execute(args, token=token)
    
    def send_text(self, pane_id, text, execute=False, token=None):
        if execute:
            text = text + '\r\n'
        args = ['send-text', '--pane-id', str(pane_id), '--no-paste']
        self.executor.execute(args, stdin=text, token=token)
    
    def kill_pane(self, pane_id, token=None):
        self.executor.execute(['kill-pane', '--pane-id', str(pane_id)], token=token)
    
    def activate_pane(self, pane_id, token=None):
        self.executor.execute(['activate-pane', '--pane-id', str(pane_id)], token=token)
    
    def start_standalone(self, cwd, program, token=None) -> int:
        args = ['start', '--always-new-process']
        if cwd:
            args.extend(['--cwd', str(cwd)])
        args.append('--')
        args.extend(program)
        return self.executor.launch(args, cwd=str(cwd) if cwd else None, token=token)
    
    @staticmethod
    def _parse_pane_id(output: str, args: List[str]) -> int:
        text = (output or '').strip()
        try:
            return int(text)
        except ValueError:
            raise MultiplexerError(f"Failed to parse pane ID from output: {text!r}", args, text)
