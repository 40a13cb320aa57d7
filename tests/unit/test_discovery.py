"""Tests for candidate discovery and dispatch-table construction."""

from typing import Annotated

import pytest

from msg_invoke import (
    Header, Marker, Message, RequestReplyExchanger, RescuePolicy, Role, Void, default, service_activator,
)
from msg_invoke.binding import BindingExpressionGenerator
from msg_invoke.candidates import Candidate
from msg_invoke.descriptors import IntrospectingOperationSource, describe_callable
from msg_invoke.discovery import CandidateBuilder
from msg_invoke.errors import (
    AmbiguousParameterTypeError, DuplicateDefaultError, IneligibleOperationError, NoEligibleOperationsError,
)


def make_builder(**kwargs):
    return CandidateBuilder(
        operation_source=IntrospectingOperationSource(),
        generator=BindingExpressionGenerator(),
        **kwargs,
    )


class TestCandidate:
    """Test dispatch-key assignment."""

    def test_payload_key(self):
        """The primary payload type is the dispatch key."""

        def fn(payload: int, tenant: Annotated[str, Header()]) -> int:
            return payload

        candidate = Candidate.from_operation(
            describe_callable(fn), target=fn, generator=BindingExpressionGenerator(),
        )

        assert candidate.dispatch_key is int
        assert not candidate.accepts_whole_message
        assert candidate.primary.name == "payload"

    def test_message_key(self):
        """Message[T] is keyed on T and accepts the whole message."""

        def fn(message: Message[int]) -> int:
            return message.payload

        candidate = Candidate.from_operation(
            describe_callable(fn), target=fn, generator=BindingExpressionGenerator(),
        )

        assert candidate.dispatch_key is int
        assert candidate.accepts_whole_message

    def test_no_argument_key(self):
        """Operations without a payload argument are keyed on Void."""

        def fn(tenant: Annotated[str, Header()]) -> str:
            return tenant

        candidate = Candidate.from_operation(
            describe_callable(fn), target=fn, generator=BindingExpressionGenerator(),
        )

        assert candidate.dispatch_key is Void

    def test_two_payload_arguments(self):
        """Two untagged payload parameters are ambiguous."""

        def fn(a: str, b: int) -> str:
            return a

        with pytest.raises(IneligibleOperationError, match="ambiguous parameter type candidate"):
            Candidate.from_operation(describe_callable(fn), target=fn, generator=BindingExpressionGenerator())


class TestBuild:
    """Test table construction for each selection rule."""

    def test_single_operation(self):
        """A target with one eligible operation is narrowed to it."""

        class Target:
            def handle(self, payload: str) -> str:
                return payload

        table = make_builder().build(Target())

        assert table.single is not None
        assert table.single.name == "handle"

    def test_multiple_operations(self):
        """Several operations fill the payload-keyed and message-keyed maps."""

        class Target:
            def on_str(self, payload: str) -> str:
                return payload

            def on_int(self, payload: int) -> int:
                return payload

            def on_message(self, message: Message[bytes]) -> bytes:
                return message.payload

        table = make_builder().build(Target())
        payload_map, message_map = table.maps

        assert table.single is None
        assert set(payload_map) == {str, int}
        assert set(message_map) == {bytes}

    def test_duplicate_primary_keys(self):
        """Two candidates for the same payload type fail the build."""

        class Target:
            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        with pytest.raises(AmbiguousParameterTypeError, match="more than one method match"):
            make_builder().build(Target())

    def test_explicit_method(self):
        """An explicit method is the only candidate, whatever else exists."""

        class Target:
            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        target = Target()
        table = make_builder().build(target, method=target.h)

        assert table.single.name == "h"
        assert table.single.call_name == "h"
        assert table.single.target is target

    def test_explicit_foreign_callable(self):
        """A callable that is not an attribute of the target is called directly."""

        def standalone(payload: str) -> str:
            return payload

        candidate = make_builder().build(object(), method=standalone).single

        assert candidate.call_name == "__call__"
        assert candidate.target is standalone

    def test_explicit_method_must_reply(self):
        """A reply-requiring engine rejects an explicit -> None operation."""

        class Target:
            def sink(self, payload: str) -> None:
                pass

        target = Target()
        with pytest.raises(IneligibleOperationError, match="must have a return type"):
            make_builder(requires_reply=True).build(target, method=target.sink)

    def test_method_name(self):
        """A name filter keeps only that operation."""

        class Target:
            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        table = make_builder().build(Target(), method_name="g")

        assert table.single.name == "g"

    def test_ineligible_operations_skipped_without_filter(self):
        """Unfiltered scans skip ineligible operations."""

        class Target:
            def handle(self, payload: str) -> str:
                return payload

            def helper(self, a: str, b: str) -> str:
                return a + b

        assert make_builder().build(Target()).single.name == "handle"

    def test_ineligible_named_operation_fails(self):
        """An explicitly named ineligible operation fails the build."""

        class Target:
            def helper(self, a: str, b: str) -> str:
                return a + b

        with pytest.raises(IneligibleOperationError):
            make_builder().build(Target(), method_name="helper")

    def test_no_eligible_operations(self):
        """A target with nothing to call fails the build."""

        class Target:
            pass

        with pytest.raises(NoEligibleOperationsError):
            make_builder().build(Target())

    def test_no_eligible_operations_keeps_cause(self):
        """The last skipped operation explains why nothing is eligible."""

        class Target:
            def helper(self, a: str, b: str) -> str:
                return a + b

        with pytest.raises(NoEligibleOperationsError) as info:
            make_builder().build(Target())

        assert isinstance(info.value.__cause__, IneligibleOperationError)

    def test_duplicate_default(self):
        """Only one operation may be the default."""

        class Target:
            @default
            def a(self) -> str:
                return "a"

            @default
            def b(self, payload: int) -> str:
                return "b"

        with pytest.raises(DuplicateDefaultError):
            make_builder().build(Target())

    def test_default_recorded(self):
        """The default operation is recorded on the table."""

        class Target:
            @default
            def other(self, payload: bytes) -> str:
                return "other"

            def on_str(self, payload: str) -> str:
                return payload

        table = make_builder().build(Target())

        assert table.default.name == "other"


class TestMarkerTiers:
    """Test primary/fallback tiers of marker-filtered scans."""

    def test_marked_operations_are_primary(self):
        """Marked operations win; unmarked ones are ignored when any is marked."""

        class Target:
            @service_activator
            def handle(self, payload: str) -> str:
                return payload

            def other(self, payload: int) -> int:
                return payload

        table = make_builder().build(Target(), marker=service_activator)

        assert table.role is Role.PRIMARY
        assert table.single.name == "handle"

    def test_fallback_tier_used_without_marked_operations(self):
        """With nothing marked the other operations become the fallback tier."""

        class Target:
            def on_str(self, payload: str) -> str:
                return payload

            def on_int(self, payload: int) -> int:
                return payload

        table = make_builder().build(Target(), marker=Marker("custom"))

        assert table.role is Role.FALLBACK
        assert set(table.maps[0]) == {str, int}
        assert table.ambiguity is None

    def test_fallback_duplicates_are_recorded(self):
        """Fallback duplicates do not fail the build."""

        class Target:
            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        table = make_builder().build(Target(), marker=Marker("custom"))

        assert table.ambiguity is not None
        assert table.single is None

    def test_fallback_duplicates_ignored_with_primary(self):
        """A marked operation makes fallback duplicates irrelevant."""

        class Target:
            @service_activator
            def handle(self, payload: int) -> int:
                return payload

            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        table = make_builder().build(Target(), marker=service_activator)

        assert table.ambiguity is None
        assert table.single.name == "handle"

    def test_marked_ineligible_operation_fails(self):
        """A marked but ineligible operation fails the build."""

        class Target:
            @service_activator
            def handle(self, a: str, b: str) -> str:
                return a

        with pytest.raises(IneligibleOperationError):
            make_builder().build(Target(), marker=service_activator)


class Exchanger(RequestReplyExchanger):
    def exchange(self, message: Message) -> Message:
        return message.with_payload(f"exchanged {message.payload}")

    def g(self, x: str) -> str:
        return x

    def h(self, y: str) -> str:
        return y


class TestRescue:
    """Test the ambiguous-fallback rescue rule."""

    def test_exchange_operation_rescues(self):
        """The exchange operation replaces an ambiguous fallback tier."""
        table = make_builder().build(Exchanger(), marker=service_activator)

        assert table.single.name == "exchange"
        assert table.single.dispatch_key is object
        assert table.ambiguity is None

    def test_other_markers_do_not_rescue(self):
        """Only the policy's markers trigger the rescue."""
        table = make_builder().build(Exchanger(), marker=Marker("custom"))

        assert table.ambiguity is not None

    def test_custom_policy(self):
        """The trigger markers, capability and operation are configurable."""
        custom = Marker("custom")

        class Swap:
            def swap(self, message: Message) -> Message:
                return message

        class Target(Swap):
            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        policy = RescuePolicy(markers=frozenset({custom}), capability=Swap, operation="swap")
        table = make_builder(rescue_policy=policy).build(Target(), marker=custom)

        assert table.single.name == "swap"


class TestDeclaredSurface:
    """Test the narrowed scan over a declared capability surface."""

    def test_proxy_operation_found_through_capabilities(self):
        """A proxy exposing nothing itself is scanned through __capabilities__."""

        class Greeter:
            def greet(self, name: str) -> str:
                raise NotImplementedError

        class RealGreeter:
            def greet(self, name):
                return f"hello {name}"

        class Proxy:
            __capabilities__ = (Greeter,)

            def __init__(self, inner):
                self._inner = inner

            def __getattr__(self, name):
                return getattr(self._inner, name)

        table = make_builder().build(Proxy(RealGreeter()), method_name="greet")

        assert table.single.name == "greet"
        assert table.single.primary.value_type is str

    def test_static_capability_keeps_its_parameters(self):
        """A static capability method is described with every parameter it declares."""

        class Shouter:
            @staticmethod
            def shout(text: str) -> str:
                raise NotImplementedError

        class Proxy:
            __capabilities__ = (Shouter,)

            def __getattr__(self, name):
                if name == "shout":
                    return lambda text: text.upper()
                raise AttributeError(name)

        table = make_builder().build(Proxy(), method_name="shout")
        (arg,) = table.single.descriptor.arguments

        assert arg.name == "text"
        assert arg.value_type is str
        assert table.single.primary is arg
