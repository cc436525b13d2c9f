"""
Tests for the override chain and the caplet registry.
"""
import pytest

from jcapsule.caplets import (
    Caplet,
    CapletNotFoundError,
    CapletRegistry,
    ChainError,
    OverrideChain,
    get_caplet_registry,
    register_caplet,
    reset_caplet_registry,
)

OPS = ("greet", "shout", "name_of")


class Base(Caplet):
    name = "base"

    def greet(self):
        return "hello from " + self.oc.name_of()

    def shout(self):
        return self.oc.greet().upper()

    def name_of(self):
        return "base"


class Polite(Caplet):
    name = "polite"

    def greet(self):
        return self.sup.greet() + ", please"


class Renamer(Caplet):
    name = "renamer"

    def name_of(self):
        return "renamer"


class Silent(Caplet):
    name = "silent"


def make_chain(*types):
    session = object()
    chain = OverrideChain(Base(session), OPS)
    for caplet_type in types:
        chain.append(caplet_type(session))
    return chain


class TestOverrideChain:
    """Tests for virtual and super dispatch."""

    def test_head_only(self):
        chain = make_chain()
        assert chain.virtual.greet() == "hello from base"

    def test_override_calls_super(self):
        chain = make_chain(Polite)
        assert chain.virtual.greet() == "hello from base, please"

    def test_head_sees_tail_overrides(self):
        chain = make_chain(Polite, Renamer)
        assert chain.virtual.shout() == "HELLO FROM RENAMER, PLEASE"

    def test_modules_without_overrides_are_transparent(self):
        chain = make_chain(Silent, Polite)
        assert chain.virtual.greet() == "hello from base, please"
        assert chain.nearest_override(Polite).name == "polite"

    def test_duplicate_type_is_skipped(self):
        chain = make_chain(Polite)
        assert chain.append(Polite(object())) is False
        assert len(chain) == 2

    def test_frozen_chain_rejects_append(self):
        chain = make_chain()
        chain.freeze()
        with pytest.raises(ChainError):
            chain.append(Polite(object()))

    def test_append_only_at_tail(self):
        chain = make_chain(Polite)
        with pytest.raises(ChainError):
            chain.append(Renamer(object()), after=chain.head)

    def test_unknown_operation(self):
        chain = make_chain()
        with pytest.raises(AttributeError):
            chain.virtual.whisper()

    def test_head_has_no_super(self):
        chain = make_chain()
        with pytest.raises(ChainError):
            chain.head.sup.greet()

    def test_module_cannot_join_two_chains(self):
        polite = Polite(object())
        make_chain().append(polite)
        with pytest.raises(ChainError):
            make_chain().append(polite)

    def test_detached_module(self):
        with pytest.raises(ChainError):
            Polite(object()).oc

    def test_queries(self):
        chain = make_chain(Polite, Renamer)
        assert chain.chain_order() == [Base, Polite, Renamer]
        assert chain.has_override(Polite)
        assert chain.nearest_override(Polite).name == "polite"
        assert chain.nearest_override(Renamer, start=chain.head) is None


class TestCapletRegistry:
    """Tests for CapletRegistry."""

    def setup_method(self):
        self.registry = CapletRegistry()

    def test_register_and_get(self):
        self.registry.register(Polite)
        assert self.registry.get("polite") is Polite
        assert self.registry.has("polite")
        assert self.registry.registered_names == ["polite"]

    def test_missing_lists_available(self):
        self.registry.register(Polite)
        with pytest.raises(CapletNotFoundError, match="Available: polite"):
            self.registry.get("nope")

    def test_rejects_non_caplets(self):
        with pytest.raises(ValueError):
            self.registry.register(object)

    def test_rejects_unnamed(self):
        class Unnamed(Caplet):
            pass

        with pytest.raises(ValueError):
            self.registry.register(Unnamed)

    def test_unregister_and_clear(self):
        self.registry.register(Polite)
        self.registry.register(Renamer)
        assert self.registry.unregister("polite") is True
        assert self.registry.unregister("polite") is False
        self.registry.clear()
        assert self.registry.registered_names == []

    def test_discover_without_entry_points(self):
        assert self.registry.discover(group="jcapsule.tests.none") == 0


class TestGlobalRegistry:
    """Tests for the global registry helpers."""

    def teardown_method(self):
        reset_caplet_registry()

    def test_decorator_registers(self):
        @register_caplet
        class Decorated(Caplet):
            name = "decorated"

        assert get_caplet_registry().get("decorated") is Decorated

    def test_reset(self):
        get_caplet_registry().register(Polite)
        reset_caplet_registry()
        assert not get_caplet_registry().has("polite")
