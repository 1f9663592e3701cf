"""Check orchestration core: parser, registry, runner, contract, scheduler, state, watcher."""

from .checkfile import CheckDefinition, CheckFile, ParseDiagnostic, Section, load_checkfile, parse_checkfile
from .contract import CheckContract, CheckStatus, ContractError, Evaluation, evaluate, parse_contract
from .registry import CheckRegistry, RegistryDiff
from .runner import RunResult, run_command
from .scheduler import CheckScheduler
from .state import CheckState, StateStore
from .watcher import CheckfileWatcher, WatchError
