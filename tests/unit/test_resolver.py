"""Tests for nearest-supertype resolution."""

from collections import abc
from typing import Iterator

import pytest

from msg_invoke import IncomingUnit, Message, Void, default
from msg_invoke.binding import BindingExpressionGenerator
from msg_invoke.descriptors import IntrospectingOperationSource
from msg_invoke.discovery import CandidateBuilder
from msg_invoke.errors import AmbiguousParameterTypeError, NoCandidateError
from msg_invoke.resolver import Resolver, closest_match, type_distance
from msg_invoke.markers import Marker


class A:
    pass


class B(A):
    pass


class C:
    pass


class Left(A):
    pass


class Right(A):
    pass


class Diamond(Left, Right):
    pass


class Sized3:
    def __len__(self):
        return 3


def resolver_for(target, **kwargs):
    builder = CandidateBuilder(
        operation_source=IntrospectingOperationSource(), generator=BindingExpressionGenerator(),
    )
    return Resolver(builder.build(target, **kwargs))


def resolve(resolver, payload):
    return resolver.resolve(IncomingUnit.of(Message(payload))).name


class TestTypeDistance:
    """Test the distance between a payload type and a key."""

    def test_mro_distance(self):
        """Distance is the key's position in the MRO."""
        assert type_distance(B, B) == 0
        assert type_distance(B, A) == 1
        assert type_distance(B, object) == 2

    def test_unrelated(self):
        """Unrelated keys have no distance."""
        assert type_distance(C, A) is None
        assert type_distance(C, "not a type") is None

    def test_virtual_supertype(self):
        """ABCs matched structurally rank just after the class that implements them."""
        assert type_distance(Sized3, abc.Sized) == 0.5
        assert type_distance(list, abc.Sequence) == 0.5


class TestNearestMatch:
    """Test resolution over a class hierarchy."""

    class Handlers:
        def on_a(self, a: A) -> str:
            return "a"

        def on_b(self, b: B) -> str:
            return "b"

    def test_exact_type(self):
        """A payload of a key's exact type selects it."""
        assert resolve(resolver_for(self.Handlers()), B()) == "on_b"
        assert resolve(resolver_for(self.Handlers()), A()) == "on_a"

    def test_nearest_ancestor(self):
        """A subclass payload selects the nearest ancestor key."""

        class BB(B):
            pass

        assert resolve(resolver_for(self.Handlers()), BB()) == "on_b"
        assert resolve(resolver_for(self.Handlers()), Left()) == "on_a"

    def test_unrelated_type_fails(self):
        """No match, no Void candidate and no default is an error."""
        with pytest.raises(NoCandidateError, match="No candidate methods found"):
            resolve(resolver_for(self.Handlers()), C())

    def test_diamond_is_deterministic(self):
        """Diamond hierarchies resolve the same way every time."""

        class Handlers:
            def on_left(self, x: Left) -> str:
                return "left"

            def on_right(self, x: Right) -> str:
                return "right"

        resolver = resolver_for(Handlers())
        results = {resolve(resolver, Diamond()) for _ in range(20)}

        assert results == {"on_left"}

    def test_tie_break_between_virtual_keys(self):
        """Equally close ABCs go to the more specific one."""
        candidates = {abc.Sized: "sized", abc.Collection: "collection"}

        assert closest_match(candidates, list) == "collection"

    def test_object_key_matches_everything(self):
        """An object-typed payload parameter is the catch-all."""

        class Handlers:
            def on_any(self, payload: object) -> str:
                return "any"

            def on_a(self, a: A) -> str:
                return "a"

        resolver = resolver_for(Handlers())

        assert resolve(resolver, A()) == "on_a"
        assert resolve(resolver, C()) == "on_any"

    def test_payload_keys_before_message_keys(self):
        """The payload-keyed map is consulted before the message-keyed map."""

        class Handlers:
            def on_payload(self, a: A) -> str:
                return "payload"

            def on_message(self, message: Message[B]) -> str:
                return "message"

        resolver = resolver_for(Handlers())

        assert resolve(resolver, B()) == "on_payload"


class TestFallbacks:
    """Test the iterator, Void and default fallbacks."""

    def test_iterator_for_iterables(self):
        """Iterable payloads fall back to an Iterator-keyed candidate."""

        class Handlers:
            def on_items(self, items: Iterator[int]) -> str:
                return "items"

            def on_a(self, a: A) -> str:
                return "a"

        resolver = resolver_for(Handlers())

        assert resolve(resolver, [1, 2]) == "on_items"
        assert resolve(resolver, A()) == "on_a"

    def test_strings_are_not_iterables(self):
        """Strings never select the Iterator-keyed candidate."""

        class Handlers:
            def on_items(self, items: Iterator[int]) -> str:
                return "items"

            def on_a(self, a: A) -> str:
                return "a"

        with pytest.raises(NoCandidateError):
            resolve(resolver_for(Handlers()), "text")

    def test_void_candidate(self):
        """Operations without a payload argument catch unmatched payloads."""

        class Handlers:
            def tick(self) -> str:
                return "tick"

            def on_a(self, a: A) -> str:
                return "a"

        resolver = resolver_for(Handlers())

        assert resolver.table.lookup(Void).name == "tick"
        assert resolve(resolver, C()) == "tick"

    def test_default_candidate(self):
        """The default operation catches what nothing else matches."""

        class Handlers:
            @default
            def fallback(self, payload: bytes) -> str:
                return "default"

            def on_a(self, a: A) -> str:
                return "a"

        resolver = resolver_for(Handlers())

        assert resolve(resolver, C()) == "fallback"
        assert resolve(resolver, A()) == "on_a"

    def test_single_candidate_skips_matching(self):
        """A single candidate is returned whatever the payload."""

        class Handlers:
            def on_a(self, a: A) -> str:
                return "a"

        resolver = resolver_for(Handlers())

        assert resolve(resolver, C()) == "on_a"
        assert resolver.resolve(IncomingUnit.batch([1, 2])).name == "on_a"

    def test_ambiguous_fallback_raises_on_use(self):
        """An unresolved fallback ambiguity surfaces when dispatching."""

        class Handlers:
            def g(self, x: str) -> str:
                return x

            def h(self, y: str) -> str:
                return y

        resolver = resolver_for(Handlers(), marker=Marker("custom"))

        with pytest.raises(AmbiguousParameterTypeError):
            resolve(resolver, "x")
