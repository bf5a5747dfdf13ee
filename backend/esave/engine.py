from __future__ import annotations
import threading
from typing import Any, Callable
from esave.config import Settings
from esave.context import CallContext
from esave.errors import Result
from esave.models.challenge import RegistryState
from esave.models.reward import DistributorState
from esave.models.savings import CalculatorConfig, CalculatorState
from esave.services import registry, rewards, savings
from esave.services.clock import BlockClock, Clock
from esave.services.ledger import InMemoryLedger, TokenLedger
from esave.services.oracle import HmacOracle, Oracle


class Engine:
    """
    Registry, savings calculator and reward distributor composed behind one lock.

    Every call reads the clock once, runs to completion, and is serialized with every
    other call, so check-then-set guards (double join, double distribution, double
    claim) hold under concurrent callers.
    """

    def __init__(
        self,
        *,
        authority: str,
        clock: Clock,
        ledger: TokenLedger,
        oracle: Oracle,
        calculator_config: CalculatorConfig | None = None,
        distributor: DistributorState | None = None,
    ):
        self.clock = clock
        self.ledger = ledger
        self.oracle = oracle
        self.registry = RegistryState(authority=authority)
        self.calculator = CalculatorState(authority=authority, config=calculator_config or CalculatorConfig())
        self.distributor = distributor or DistributorState(authority=authority)
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, s: Settings) -> "Engine":
        ledger = InMemoryLedger(issuers={s.treasury_principal})
        if s.authority_float > 0:
            ledger.mint(s.authority_principal, s.authority_float)
        return cls(
            authority=s.authority_principal,
            clock=BlockClock(s.genesis_height),
            ledger=ledger,
            oracle=HmacOracle(s.oracle_secret),
            calculator_config=CalculatorConfig(
                oracle_contract=s.oracle_contract,
                registry_contract=s.calculator_registry_contract,
                max_data_points=s.max_data_points,
                min_kwh_threshold=s.min_kwh_threshold,
                max_kwh_threshold=s.max_kwh_threshold,
                baseline_duration=s.baseline_duration,
                update_fee=s.update_fee,
            ),
            distributor=DistributorState(
                authority=s.authority_principal,
                token_contract=s.token_contract,
                calculator_contract=s.calculator_contract,
                registry_contract=s.registry_contract,
                treasury=s.treasury_principal,
            ),
        )

    def _run(self, caller: str, fn: Callable[[CallContext], Any]) -> Any:
        with self._lock:
            ctx = CallContext(caller=caller, height=self.clock.current_height())
            return fn(ctx)

    def _read(self, fn: Callable[[], Any]) -> Any:
        with self._lock:
            return fn()

    @property
    def height(self) -> int:
        return self._read(self.clock.current_height)

    def advance_clock(self, blocks: int = 1) -> int:
        """Local hosting only; raises TypeError when the clock is externally driven."""
        advance = getattr(self.clock, "advance", None)
        if advance is None:
            raise TypeError(f"{type(self.clock).__name__} cannot be advanced")
        with self._lock:
            return advance(blocks)

    # ---------- registry ----------

    def set_authority(self, caller: str, new_authority: str) -> Result[bool]:
        return self._run(caller, lambda ctx: registry.set_authority(self.registry, ctx, new_authority))

    def create_challenge(self, caller: str, **fields) -> Result[int]:
        return self._run(caller, lambda ctx: registry.create_challenge(self.registry, ctx, **fields))

    def update_challenge(self, caller: str, challenge_id: int, **fields) -> Result[bool]:
        return self._run(caller, lambda ctx: registry.update_challenge(self.registry, ctx, challenge_id, **fields))

    def end_challenge(self, caller: str, challenge_id: int) -> Result[bool]:
        return self._run(caller, lambda ctx: registry.end_challenge(self.registry, ctx, challenge_id))

    def join_challenge(self, caller: str, challenge_id: int) -> Result[bool]:
        return self._run(caller, lambda ctx: registry.join_challenge(self.registry, ctx, challenge_id))

    def leave_challenge(self, caller: str, challenge_id: int) -> Result[bool]:
        return self._run(caller, lambda ctx: registry.leave_challenge(self.registry, ctx, challenge_id))

    def get_challenge(self, challenge_id: int):
        return self._read(lambda: registry.get_challenge(self.registry, challenge_id))

    def next_challenge_id(self) -> int:
        return self._read(lambda: registry.next_challenge_id(self.registry))

    def get_participants(self, challenge_id: int) -> list[str]:
        return self._read(lambda: registry.get_participants(self.registry, challenge_id))

    def get_membership(self, challenge_id: int, participant: str):
        return self._read(lambda: registry.get_membership(self.registry, challenge_id, participant))

    def has_participant(self, challenge_id: int, participant: str) -> bool:
        return self._read(lambda: registry.has_participant(self.registry, challenge_id, participant))

    def is_active(self, challenge_id: int) -> bool:
        return self._read(lambda: registry.is_active(self.registry, challenge_id, self.clock.current_height()))

    def is_ended(self, challenge_id: int) -> bool:
        return self._read(lambda: registry.is_ended(self.registry, challenge_id, self.clock.current_height()))

    # ---------- savings calculator ----------

    def set_oracle_contract(self, caller: str, contract: str) -> Result[bool]:
        return self._run(caller, lambda ctx: savings.set_oracle_contract(self.calculator, ctx, contract))

    def set_calculator_registry_contract(self, caller: str, contract: str) -> Result[bool]:
        return self._run(caller, lambda ctx: savings.set_registry_contract(self.calculator, ctx, contract))

    def set_calculator_param(self, caller: str, name: str, value: int) -> Result[bool]:
        """name is one of max_data_points, min_kwh_threshold, max_kwh_threshold, baseline_duration, update_fee."""
        setter = _CALCULATOR_SETTERS[name]
        return self._run(caller, lambda ctx: setter(self.calculator, ctx, value))

    def submit_meter_reading(
        self, caller: str, participant: str, challenge_id: int, kwh_reading: int, signature: bytes
    ) -> Result[bool]:
        return self._run(caller, lambda ctx: savings.submit_meter_reading(
            self.calculator, ctx, participant, challenge_id, kwh_reading, signature,
            challenges=registry.RegistryView(self.registry, ctx.height),
            oracle=self.oracle,
        ))

    def set_baseline(self, caller: str, participant: str, challenge_id: int, baseline_kwh: int) -> Result[bool]:
        return self._run(caller, lambda ctx: savings.set_baseline(self.calculator, ctx, participant, challenge_id, baseline_kwh))

    def update_eligibility(self, caller: str, participant: str, challenge_id: int, eligible: bool) -> Result[bool]:
        return self._run(caller, lambda ctx: savings.update_eligibility(
            self.calculator, ctx, participant, challenge_id, eligible, ledger=self.ledger
        ))

    def calculate_average_usage(self, caller: str, participant: str, challenge_id: int) -> Result[int]:
        return self._run(caller, lambda ctx: savings.calculate_average_usage(self.calculator, ctx, participant, challenge_id))

    def detect_anomaly(self, caller: str, participant: str, challenge_id: int, kwh: int) -> Result[bool]:
        return self._run(caller, lambda ctx: savings.detect_anomaly(self.calculator, ctx, participant, challenge_id, kwh))

    def finalize_savings(self, caller: str, participant: str, challenge_id: int) -> Result[int]:
        return self._run(caller, lambda ctx: savings.finalize_savings(self.calculator, ctx, participant, challenge_id))

    def get_savings_percentage(self, participant: str, challenge_id: int) -> Result[int]:
        return self._read(lambda: savings.get_savings_percentage(self.calculator, participant, challenge_id))

    def get_calculator_config(self) -> CalculatorConfig:
        return self._read(lambda: savings.get_config(self.calculator))

    def get_baseline(self, participant: str, challenge_id: int):
        return self._read(lambda: savings.get_baseline(self.calculator, participant, challenge_id))

    def get_period_data(self, participant: str, challenge_id: int):
        return self._read(lambda: savings.get_period_data(self.calculator, participant, challenge_id))

    def get_eligibility(self, participant: str, challenge_id: int):
        return self._read(lambda: savings.get_eligibility(self.calculator, participant, challenge_id))

    def next_reading_sequence(self, participant: str, challenge_id: int) -> int:
        return self._read(lambda: savings.next_reading_sequence(self.calculator, participant, challenge_id))

    def get_average_usage(self, participant: str, challenge_id: int) -> int | None:
        return self._read(lambda: savings.get_average_usage(self.calculator, participant, challenge_id))

    def get_anomaly_count(self, participant: str, challenge_id: int) -> int:
        return self._read(lambda: savings.get_anomaly_count(self.calculator, participant, challenge_id))

    # ---------- reward distributor ----------

    def set_token_contract(self, caller: str, contract: str) -> Result[bool]:
        return self._run(caller, lambda ctx: rewards.set_token_contract(self.distributor, ctx, contract))

    def set_calculator_contract(self, caller: str, contract: str) -> Result[bool]:
        return self._run(caller, lambda ctx: rewards.set_calculator_contract(self.distributor, ctx, contract))

    def set_distributor_registry_contract(self, caller: str, contract: str) -> Result[bool]:
        return self._run(caller, lambda ctx: rewards.set_registry_contract(self.distributor, ctx, contract))

    def fund_challenge(self, caller: str, challenge_id: int, amount: int) -> Result[bool]:
        return self._run(caller, lambda ctx: rewards.fund_challenge(self.distributor, ctx, challenge_id, amount))

    def set_challenge_target(self, caller: str, challenge_id: int, target_percentage: int, end_height: int) -> Result[bool]:
        return self._run(caller, lambda ctx: rewards.set_challenge_target(
            self.distributor, ctx, challenge_id, target_percentage, end_height
        ))

    def distribute_rewards(self, caller: str, challenge_id: int) -> Result[bool]:
        return self._run(caller, lambda ctx: rewards.distribute_rewards(
            self.distributor, ctx, challenge_id,
            challenges=registry.RegistryView(self.registry, ctx.height),
            savings=savings.CalculatorView(self.calculator),
        ))

    def claim_reward(self, caller: str, challenge_id: int) -> Result[int]:
        return self._run(caller, lambda ctx: rewards.claim_reward(self.distributor, ctx, challenge_id, ledger=self.ledger))

    def get_challenge_reward(self, challenge_id: int):
        return self._read(lambda: rewards.get_challenge_reward(self.distributor, challenge_id))

    def get_participant_reward(self, challenge_id: int, participant: str):
        return self._read(lambda: rewards.get_participant_reward(self.distributor, challenge_id, participant))

    def reward_snapshot(self, challenge_id: int) -> dict | None:
        return self._read(lambda: rewards.reward_snapshot(self.distributor, challenge_id))


_CALCULATOR_SETTERS = {
    "max_data_points": savings.set_max_data_points,
    "min_kwh_threshold": savings.set_min_kwh_threshold,
    "max_kwh_threshold": savings.set_max_kwh_threshold,
    "baseline_duration": savings.set_baseline_duration,
    "update_fee": savings.set_update_fee,
}
