"""
Tests for WorkflowDefinitionCatalog.

Tests cover:
- Creation with closed entity-type and topology enumerations
- Single default per entity type (demotion on create and on update)
- Step validation: positive, gap-free orders; sequential uniqueness;
  approver specifier and timing validation
- Structural freeze while a pending instance references the definition
- Deprecation and listing
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import (
    ApproverType,
    EntityType,
    NewDefinition,
    NewStep,
    Topology,
)
from approval_kernel.exceptions import (
    DefinitionDeprecatedError,
    DefinitionInUseError,
    DefinitionNotFoundError,
    DuplicateStepOrderError,
    InvalidApproverSpecError,
    InvalidEntityTypeError,
    InvalidStepOrderError,
    InvalidTopologyError,
    MissingFieldError,
)


def new_definition(**overrides):
    values = dict(name="Proposal review", entity_type="proposal", topology="sequential")
    values.update(overrides)
    return NewDefinition(**values)


class TestCreate:
    def test_create_returns_active_definition(self, catalog, deterministic_clock):
        definition = catalog.create(new_definition(description="two stage"))
        assert definition.entity_type == EntityType.PROPOSAL
        assert definition.topology == Topology.SEQUENTIAL
        assert definition.is_active
        assert not definition.is_default
        assert definition.created_at == deterministic_clock.now()
        assert definition.steps == ()

    def test_unknown_entity_type(self, catalog):
        with pytest.raises(InvalidEntityTypeError):
            catalog.create(new_definition(entity_type="purchase_order"))

    def test_unknown_topology(self, catalog):
        with pytest.raises(InvalidTopologyError):
            catalog.create(new_definition(topology="majority"))

    def test_blank_name(self, catalog):
        with pytest.raises(MissingFieldError):
            catalog.create(new_definition(name="   "))

    def test_new_default_demotes_previous(self, catalog):
        first = catalog.create(new_definition(name="A", is_default=True))
        second = catalog.create(new_definition(name="B", is_default=True))

        assert catalog.get(second.definition_id).is_default
        assert not catalog.get(first.definition_id).is_default
        assert catalog.get_default("proposal").definition_id == second.definition_id

    def test_defaults_are_per_entity_type(self, catalog):
        proposal = catalog.create(new_definition(name="A", is_default=True))
        catalog.create(new_definition(name="B", entity_type="invoice", is_default=True))
        assert catalog.get(proposal.definition_id).is_default


class TestAddStep:
    def test_steps_returned_in_order(self, catalog):
        definition = catalog.create(new_definition())
        catalog.add_step(definition.definition_id, NewStep(1, "role", "admin"))
        catalog.add_step(definition.definition_id, NewStep(2, "dynamic", "client",
                                                           auto_approve_after_hours=48))

        steps = catalog.get_steps(definition.definition_id)
        assert [s.step_order for s in steps] == [1, 2]
        assert steps[0].approver_type == ApproverType.ROLE
        assert steps[1].auto_approve_after_hours == 48

    def test_unknown_definition(self, catalog):
        with pytest.raises(DefinitionNotFoundError):
            catalog.add_step(uuid4(), NewStep(1, "user", "alice"))

    @pytest.mark.parametrize("order", [0, -1])
    def test_non_positive_order(self, catalog, order):
        definition = catalog.create(new_definition())
        with pytest.raises(InvalidStepOrderError):
            catalog.add_step(definition.definition_id, NewStep(order, "user", "alice"))

    def test_gap_rejected(self, catalog):
        definition = catalog.create(new_definition())
        catalog.add_step(definition.definition_id, NewStep(1, "user", "alice"))
        with pytest.raises(InvalidStepOrderError):
            catalog.add_step(definition.definition_id, NewStep(3, "user", "bob"))

    def test_sequential_duplicate_rejected(self, catalog):
        definition = catalog.create(new_definition())
        catalog.add_step(definition.definition_id, NewStep(1, "user", "alice"))
        with pytest.raises(DuplicateStepOrderError):
            catalog.add_step(definition.definition_id, NewStep(1, "user", "bob"))

    def test_parallel_duplicate_allowed(self, catalog):
        definition = catalog.create(new_definition(topology="parallel"))
        catalog.add_step(definition.definition_id, NewStep(1, "user", "alice"))
        catalog.add_step(definition.definition_id, NewStep(1, "user", "bob"))
        assert len(catalog.get_steps(definition.definition_id)) == 2

    @pytest.mark.parametrize("step", [
        NewStep(1, "group", "admins"),
        NewStep(1, "user", "  "),
        NewStep(1, "dynamic", "cfo"),
        NewStep(1, "user", "alice", auto_approve_after_hours=0),
        NewStep(1, "user", "alice", auto_approve_after_hours=48, escalate_after_hours=24),
    ])
    def test_invalid_approver_spec(self, catalog, step):
        definition = catalog.create(new_definition())
        with pytest.raises(InvalidApproverSpecError):
            catalog.add_step(definition.definition_id, step)

    def test_owner_alias_accepted(self, catalog):
        definition = catalog.create(new_definition())
        step = catalog.add_step(definition.definition_id, NewStep(1, "dynamic", "owner"))
        assert step.approver_value == "owner"

    def test_frozen_while_instance_pending(self, catalog, engine, make_definition):
        definition = make_definition("sequential", (1, "user", "alice"))
        engine.start(definition.definition_id, "proposal", "P-1", "ivan")

        with pytest.raises(DefinitionInUseError):
            catalog.add_step(definition.definition_id, NewStep(2, "user", "bob"))

    def test_editable_again_after_instance_finishes(self, catalog, engine, make_definition):
        definition = make_definition("sequential", (1, "user", "alice"))
        instance = engine.start(definition.definition_id, "proposal", "P-1", "ivan")
        engine.cancel(instance.instance_id, "admin")

        step = catalog.add_step(definition.definition_id, NewStep(2, "user", "bob"))
        assert step.step_order == 2


class TestMetadataAndLifecycle:
    def test_metadata_editable_while_in_use(self, catalog, engine, make_definition):
        definition = make_definition("any_one", (1, "role", "admin"))
        engine.start(definition.definition_id, "proposal", "P-1", "ivan")

        updated = catalog.update_metadata(
            definition.definition_id, name="Renamed", description="new text", is_default=True,
        )
        assert updated.name == "Renamed"
        assert updated.description == "new text"
        assert updated.is_default

    def test_deprecate(self, catalog):
        definition = catalog.create(new_definition(is_default=True))
        deprecated = catalog.deprecate(definition.definition_id)

        assert not deprecated.is_active
        assert not deprecated.is_default
        assert catalog.get_default("proposal") is None
        with pytest.raises(DefinitionDeprecatedError):
            catalog.add_step(definition.definition_id, NewStep(1, "user", "alice"))

    def test_deprecated_cannot_become_default(self, catalog):
        definition = catalog.create(new_definition())
        catalog.deprecate(definition.definition_id)
        with pytest.raises(DefinitionDeprecatedError):
            catalog.update_metadata(definition.definition_id, is_default=True)


class TestReads:
    def test_get_unknown(self, catalog):
        assert catalog.get(uuid4()) is None
        assert catalog.get_steps(uuid4()) == []

    def test_list_by_entity_type_default_first(self, catalog):
        catalog.create(new_definition(name="Alpha"))
        catalog.create(new_definition(name="Zulu", is_default=True))
        catalog.create(new_definition(name="Other", entity_type="invoice"))

        names = [d.name for d in catalog.list_by_entity_type("proposal")]
        assert names == ["Zulu", "Alpha"]

    def test_list_excludes_deprecated_unless_asked(self, catalog):
        keep = catalog.create(new_definition(name="Keep"))
        gone = catalog.create(new_definition(name="Gone"))
        catalog.deprecate(gone.definition_id)

        assert [d.definition_id for d in catalog.list_all()] == [keep.definition_id]
        assert len(catalog.list_all(include_inactive=True)) == 2

    def test_list_with_steps(self, catalog, make_definition):
        make_definition("sequential", (1, "user", "alice"), (2, "user", "bob"))
        listed = catalog.list_by_entity_type("proposal", include_steps=True)
        assert [s.approver_value for s in listed[0].steps] == ["alice", "bob"]
