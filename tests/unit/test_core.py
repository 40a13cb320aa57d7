"""Tests for core types: Message, IncomingUnit and the role registry."""

from typing import Annotated, Dict, Iterator, List, Optional

import pytest

from msg_invoke import ArgumentRole, Header, Headers, IncomingUnit, Message, Payload, Payloads
from msg_invoke.core import ParameterInfo, ParameterMatcher, RoleNode, RoleRegistry
from msg_invoke.descriptors import parameter_info
from msg_invoke.errors import InvalidUnitError
from msg_invoke.matchers import AlwaysMatcher, build_default_role_registry


class TestMessage:
    """Test the Message value type."""

    def test_default_headers_are_empty(self):
        """A message without headers gets an empty mapping."""
        assert Message("x").headers == {}

    def test_with_payload_keeps_headers(self):
        """with_payload replaces only the payload."""
        original = Message("x", {"a": 1})
        copy = original.with_payload(5)

        assert copy.payload == 5
        assert copy.headers == {"a": 1}
        assert original.payload == "x"


class TestIncomingUnit:
    """Test the per-call unit wrapper."""

    def test_single_unit_accessors(self, message):
        """A single unit exposes payload, headers and the message itself."""
        unit = IncomingUnit.of(message)

        assert unit.payload == "foo"
        assert unit.headers["tenant"] == "acme"
        assert unit.message is message
        assert unit.first_parameter_type is str
        assert not unit.is_batch

    def test_messages_on_single_unit_raises(self, message):
        """The batch accessor fails on a single unit."""
        with pytest.raises(InvalidUnitError):
            IncomingUnit.of(message).messages

    def test_payload_on_batch_raises(self):
        """The payload accessor fails on a batch."""
        unit = IncomingUnit.batch([Message(1), Message(2)], {"h": "v"})

        with pytest.raises(InvalidUnitError):
            unit.payload

    def test_batch_synthesises_whole_unit(self):
        """A batch is presented as one message carrying the shared headers."""
        messages = [Message(1), Message(2)]
        unit = IncomingUnit.batch(messages, {"h": "v"})

        whole = unit.message
        assert whole.payload == messages
        assert whole.headers == {"h": "v"}
        assert unit.message is whole

    def test_payloads_unwraps_messages(self):
        """payloads() takes the payload of messages and raw elements as-is."""
        unit = IncomingUnit.batch([Message(1), 2, Message(3)])

        assert unit.payloads() == [1, 2, 3]
        assert unit.first_parameter_type is list

    def test_substitute_payload(self, message):
        """Substitution replaces the payload and the whole-unit view."""
        unit = IncomingUnit.of(message)
        unit.substitute_payload({"id": 1})

        assert unit.payload == {"id": 1}
        assert unit.message.payload == {"id": 1}
        assert unit.message.headers == message.headers
        assert message.payload == "foo"

    def test_substitute_payload_on_batch_raises(self):
        """Only single units carry a payload that can be substituted."""
        with pytest.raises(InvalidUnitError):
            IncomingUnit.batch([1, 2]).substitute_payload(3)

    def test_requires_message_or_messages(self):
        """An empty constructor call is rejected."""
        with pytest.raises(ValueError):
            IncomingUnit()


class TestRoleRegistry:
    """Test first-match classification by priority."""

    def test_highest_priority_wins(self):
        """The node with the highest priority matching the parameter wins."""

        class NamedX(ParameterMatcher):
            def matches(self, param):
                return param.name == "x"

        registry = RoleRegistry()
        registry.register(RoleNode("all", 0, AlwaysMatcher(), ArgumentRole.PAYLOAD))
        registry.register(RoleNode("x", 10, NamedX(), ArgumentRole.HEADER_MAP))

        assert registry.resolve(ParameterInfo("x", object, object)) is ArgumentRole.HEADER_MAP
        assert registry.resolve(ParameterInfo("y", object, object)) is ArgumentRole.PAYLOAD

    def test_no_match_returns_none(self):
        """An empty registry classifies nothing."""
        assert RoleRegistry().resolve(ParameterInfo("x", object, object)) is None


class TestDefaultRoles:
    """Test the default parameter classification."""

    @pytest.fixture
    def registry(self):
        return build_default_role_registry()

    @pytest.mark.parametrize("hint, role", [
        (str, ArgumentRole.PAYLOAD),
        (int, ArgumentRole.PAYLOAD),
        (Message, ArgumentRole.WHOLE_UNIT),
        (Message[int], ArgumentRole.WHOLE_UNIT),
        (List[int], ArgumentRole.COLLECTION),
        (Iterator[int], ArgumentRole.ITERATOR),
        (Dict[str, int], ArgumentRole.UNQUALIFIED_MAP),
        (Annotated[dict, Headers()], ArgumentRole.HEADER_MAP),
        (Annotated[str, Header("id")], ArgumentRole.HEADER_NAMED),
        (Annotated[dict, Payload()], ArgumentRole.PAYLOAD),
        (Annotated[list, Payloads()], ArgumentRole.COLLECTION),
        (Optional[Annotated[str, Header("id")]], ArgumentRole.HEADER_NAMED),
    ])
    def test_classification(self, registry, hint, role):
        """Tags win over declared types; untagged scalars are payloads."""
        assert registry.resolve(parameter_info("p", hint)) is role

    def test_message_list_needs_batch_support(self, registry):
        """list[Message] is a batch of messages only for batch-capable engines."""
        plain = parameter_info("p", List[Message])
        batch = parameter_info("p", List[Message], can_process_message_list=True)

        assert registry.resolve(plain) is ArgumentRole.COLLECTION
        assert registry.resolve(batch) is ArgumentRole.MESSAGES

    def test_optional_is_unwrapped(self):
        """Optional[X] is X with the optional flag set."""
        info = parameter_info("p", Optional[int])

        assert info.base_type is int
        assert info.optional
