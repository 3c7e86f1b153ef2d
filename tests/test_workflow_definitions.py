"""
Tests for the workflow data model and definition store

Covers wire parsing, stage-graph validation, reference checks, tenant
isolation, updates, deletion guards and template instantiation.
"""

import pytest

from resolve_core.complaints import ComplaintStatus
from resolve_core.errors import (
    ValidationError, InvalidReferenceError, ConflictError, NotFoundError,
)
from resolve_core.storage import utc_now
from resolve_core.workflows import (
    DEFINITIONS_TABLE, ConditionType, AssignmentType,
    WorkflowDefinition, StatusUpdateConfig, AssignmentConfig, NotificationConfig,
    parse_stages, validate_stages,
)

from conftest import T0, stage, goes_to, action


THREE_STAGES = [
    stage("intake", 1, hours=4, transitions=[goes_to("review")]),
    stage("review", 2, hours=8, actions=[action("STATUS_UPDATE", status="In Progress")],
          transitions=[goes_to("done")]),
    stage("done", 3, hours=1, actions=[action("STATUS_UPDATE", status="Resolved")]),
]


class TestStageParsing:
    """Test wire-format parsing of stages"""

    def test_parses_typed_action_configs(self):
        """Each action type gets its own config class with defaults filled in"""
        stages = parse_stages([
            stage("s1", 1, actions=[
                action("NOTIFICATION", notifyDepartment=True),
                action("STATUS_UPDATE", status="In Progress", updateReason="Started"),
                action("ASSIGNMENT", assignmentType="AUTO"),
            ]),
        ])
        notification, status_update, assignment = stages[0].actions
        assert isinstance(notification.config, NotificationConfig)
        assert notification.config.notify_department is True
        assert notification.config.notify_complainant is False
        assert status_update.config == StatusUpdateConfig(ComplaintStatus.IN_PROGRESS, "Started")
        assert isinstance(assignment.config, AssignmentConfig)
        assert assignment.config.assignment_type == AssignmentType.AUTO
        assert assignment.config.find_available_user is True

    def test_duration_defaults_to_24_hours(self):
        """A stage without durationInHours lasts a day"""
        raw = {"id": "s1", "name": "Only", "order": 1}
        assert parse_stages([raw])[0].duration_in_hours == 24

    def test_transition_condition_defaults_to_always(self):
        """A transition without a condition is ALWAYS"""
        raw = stage("s1", 1, transitions=[{"targetStageId": "s1"}])
        transition = parse_stages([raw])[0].transitions[0]
        assert transition.condition.condition_type == ConditionType.ALWAYS

    def test_wrongly_typed_config_is_rejected(self):
        """Config keys of the wrong type are reported with their location"""
        with pytest.raises(ValidationError) as exc_info:
            parse_stages([stage("s1", 1, actions=[action("NOTIFICATION", notifyDepartment="yes")])])
        assert any("notifyDepartment" in detail for detail in exc_info.value.details)

    def test_unknown_action_type_is_rejected(self):
        """Action types outside the four known ones fail parsing"""
        with pytest.raises(ValidationError) as exc_info:
            parse_stages([stage("s1", 1, actions=[action("TELEPORT")])])
        assert "TELEPORT" in exc_info.value.details[0]

    def test_non_integer_order_is_rejected(self):
        """Stage order must be an integer"""
        raw = stage("s1", 1)
        raw["order"] = "first"
        with pytest.raises(ValidationError):
            parse_stages([raw])

    def test_wire_round_trip_keeps_camel_case(self):
        """to_wire reproduces the camelCase keys it was parsed from"""
        wire = parse_stages(THREE_STAGES)[1].to_wire()
        assert wire["durationInHours"] == 8
        assert wire["transitions"][0]["targetStageId"] == "done"
        assert wire["actions"][0] == {"type": "STATUS_UPDATE", "config": {"status": "In Progress"}}


class TestStageValidation:
    """Test structural validation of stage lists"""

    def test_valid_graph_has_no_problems(self):
        assert validate_stages(parse_stages(THREE_STAGES)) == []

    def test_empty_stage_list(self):
        assert validate_stages([]) == ["Workflow must have at least one stage"]

    def test_reports_every_problem(self):
        """Duplicate ids, duplicate orders and dangling targets are all listed"""
        stages = parse_stages([
            stage("a", 1, transitions=[goes_to("missing")]),
            stage("a", 2),
            stage("b", 2, hours=0),
        ])
        problems = validate_stages(stages)
        assert "Duplicate stage id 'a'" in problems
        assert "Duplicate stage order 2" in problems
        assert "Stage 'b' must have a positive duration" in problems
        assert any("unknown stage 'missing'" in p for p in problems)


class TestDefinitionModel:
    """Test derived properties of a definition"""

    def make(self, stages):
        now = utc_now()
        return WorkflowDefinition(id="wf", created_at=now, updated_at=now, organization_id="org",
                                  name="Test", stages=parse_stages(stages))

    def test_entry_stage_is_lowest_order(self):
        definition = self.make([stage("late", 5), stage("early", 2)])
        assert definition.entry_stage().id == "early"

    def test_final_stage_needs_max_order_and_no_transitions(self):
        """A max-order stage that loops back is not final"""
        definition = self.make([
            stage("a", 1, transitions=[goes_to("b")]),
            stage("b", 2, transitions=[goes_to("a")]),
        ])
        assert not definition.is_final_stage(definition.stage_by_id("b"))

        definition = self.make(THREE_STAGES)
        assert definition.is_final_stage(definition.stage_by_id("done"))
        assert not definition.is_final_stage(definition.stage_by_id("review"))

    def test_remaining_duration(self):
        """Sum of durations from an order onward"""
        definition = self.make(THREE_STAGES)
        assert definition.remaining_duration().total_seconds() == 13 * 3600
        assert definition.remaining_duration(2).total_seconds() == 9 * 3600

    def test_first_stage_setting_status(self):
        definition = self.make(THREE_STAGES)
        assert definition.first_stage_setting_status(ComplaintStatus.RESOLVED).id == "done"
        assert definition.first_stage_setting_status(ComplaintStatus.CLOSED) is None


class TestDefinitionStore:
    """Test create, read, update and delete of definitions"""

    def test_create_assigns_id_and_persists(self, make_definition, storage):
        definition = make_definition(THREE_STAGES)
        assert definition.id
        assert storage.exists(DEFINITIONS_TABLE, definition.id)

    def test_create_is_audited(self, make_definition, audit_trail):
        definition = make_definition(THREE_STAGES)
        events = audit_trail.get_events_for_entity('workflow_definition', definition.id)
        assert [e.event_type.value for e in events] == ["workflow_definition_created"]

    def test_duplicate_stage_ids_persist_nothing(self, make_definition, storage):
        """An invalid graph raises before anything is stored"""
        with pytest.raises(ValidationError) as exc_info:
            make_definition([stage("a", 1), stage("a", 2)])
        assert "Duplicate stage id 'a'" in exc_info.value.details
        assert storage.count(DEFINITIONS_TABLE) == 0

    def test_duplicate_orders_persist_nothing(self, make_definition, storage):
        with pytest.raises(ValidationError):
            make_definition([stage("a", 1), stage("b", 1)])
        assert storage.count(DEFINITIONS_TABLE) == 0

    def test_name_is_required(self, make_definition):
        with pytest.raises(ValidationError) as exc_info:
            make_definition(THREE_STAGES, name="  ")
        assert "Workflow name is required" in exc_info.value.details

    def test_department_from_other_organization(self, make_definition, directory):
        """References must point into the definition's organization"""
        other_org = directory.register_organization("Southgate College", "College", "info@southgate.edu")
        foreign = directory.create_department(other_org.id, "Registry")
        with pytest.raises(InvalidReferenceError):
            make_definition(THREE_STAGES, department_id=foreign.id)

    def test_unknown_complaint_type(self, make_definition):
        with pytest.raises(InvalidReferenceError):
            make_definition(THREE_STAGES, complaint_type_id="nope")

    def test_get_is_tenant_scoped(self, make_definition, definitions, org):
        definition = make_definition(THREE_STAGES)
        assert definitions.get(definition.id, org.id).name == "Housing workflow"
        with pytest.raises(NotFoundError):
            definitions.get(definition.id, "another-org")

    def test_list_by_filters(self, make_definition, definitions, org, department, other_department):
        make_definition(THREE_STAGES, name="First")
        make_definition(THREE_STAGES, name="Second", department_id=other_department.id, is_active=False)

        assert len(definitions.list_by(org.id)) == 2
        assert [d.name for d in definitions.list_by(org.id, department_id=department.id)] == ["First"]
        assert [d.name for d in definitions.list_by(org.id, is_active=False)] == ["Second"]

    def test_update_replaces_stages_from_wire(self, make_definition, definitions, audit_trail):
        definition = make_definition(THREE_STAGES)
        updated = definitions.update(definition.id, {
            "name": "Renamed",
            "stages": [stage("only", 1)],
            "organization_id": "ignored",
        })
        assert updated.name == "Renamed"
        assert [s.id for s in definitions.get(definition.id).stages] == ["only"]
        assert updated.organization_id == definition.organization_id

        events = audit_trail.get_events_for_entity('workflow_definition', definition.id)
        assert events[-1].metadata["fields"] == ["name", "stages"]

    def test_invalid_update_keeps_stored_version(self, make_definition, definitions):
        definition = make_definition(THREE_STAGES)
        with pytest.raises(ValidationError):
            definitions.update(definition.id, {"stages": [stage("x", 1, transitions=[goes_to("y")])]})
        assert len(definitions.get(definition.id).stages) == 3

    def test_update_cannot_remove_stage_in_use(self, make_definition, make_complaint, definitions, engine):
        """Dropping the stage an unfinished instance sits in is refused"""
        definition = make_definition(THREE_STAGES)
        instance = engine.initialize(make_complaint(), T0)
        assert instance.current_stage_id == "intake"

        with pytest.raises(ConflictError):
            definitions.update(definition.id, {"stages": THREE_STAGES[1:]})
        stored = definitions.get(definition.id)
        assert [s.id for s in stored.stages] == ["intake", "review", "done"]
        assert stored.stage_by_id(engine.get(instance.id).current_stage_id) is not None

    def test_update_may_change_other_stages_in_use(self, make_definition, make_complaint,
                                                   definitions, engine):
        definition = make_definition(THREE_STAGES)
        engine.initialize(make_complaint(), T0)

        updated = definitions.update(definition.id, {"stages": [
            stage("intake", 1, hours=2, transitions=[goes_to("done")]),
            stage("done", 2, hours=1),
        ]})
        assert [s.id for s in updated.stages] == ["intake", "done"]

    def test_update_may_remove_stage_of_finished_instance(self, make_definition, make_complaint,
                                                          definitions, engine):
        definition = make_definition(THREE_STAGES)
        instance = engine.initialize(make_complaint(), T0)
        engine.cancel(instance.id, reason="Withdrawn", now=T0)

        updated = definitions.update(definition.id, {"stages": THREE_STAGES[1:]})
        assert [s.id for s in updated.stages] == ["review", "done"]

    def test_find_active_for_prefers_oldest(self, make_definition, definitions, org, complaint_type):
        first = make_definition(THREE_STAGES, name="First")
        make_definition(THREE_STAGES, name="Second")
        make_definition(THREE_STAGES, name="Inactive", is_active=False)
        assert definitions.find_active_for(org.id, complaint_type.id).id == first.id

    def test_find_active_for_without_match(self, definitions, org):
        assert definitions.find_active_for(org.id, "unknown-type") is None


class TestDefinitionDeletion:
    """Test the in-use guard on delete"""

    def test_delete_unused(self, make_definition, definitions):
        definition = make_definition(THREE_STAGES)
        definitions.delete(definition.id)
        with pytest.raises(NotFoundError):
            definitions.get(definition.id)

    def test_delete_with_active_instance_conflicts(self, make_definition, make_complaint,
                                                   definitions, engine):
        definition = make_definition(THREE_STAGES)
        complaint = make_complaint()
        engine.initialize(complaint, T0)

        with pytest.raises(ConflictError):
            definitions.delete(definition.id)
        assert definitions.get(definition.id)

    def test_delete_after_completion(self, make_definition, make_complaint, definitions, engine):
        definition = make_definition(THREE_STAGES)
        instance = engine.initialize(make_complaint(), T0)
        engine.advance(instance.id, "review", now=T0)
        engine.advance(instance.id, "done", now=T0)

        definitions.delete(definition.id)
        assert definitions.list_by(definition.organization_id) == []

    def test_delete_after_cancel(self, make_definition, make_complaint, definitions, engine):
        definition = make_definition(THREE_STAGES)
        instance = engine.initialize(make_complaint(), T0)
        engine.cancel(instance.id, reason="Withdrawn", now=T0)

        definitions.delete(definition.id)


class TestDefinitionsFromTemplates:
    """Test instantiating catalog templates"""

    def test_create_from_template_copies_stages(self, definitions, templates, org,
                                                complaint_type, department):
        template = templates.get_by_id("basic-linear-3-step")
        definition = definitions.create_from_template(
            "basic-linear-3-step", org.id, complaint_type_id=complaint_type.id, department_id=department.id,
        )
        assert definition.name == template.name
        assert definition.stages_to_wire() == [s.to_wire() for s in template.stages]
        assert definition.organization_id == org.id

    def test_name_and_description_overrides(self, definitions, org):
        definition = definitions.create_from_template(
            "basic-linear-3-step", org.id, name="Our Process", description="Tailored"
        )
        assert definition.name == "Our Process"
        assert definition.description == "Tailored"

    def test_unknown_template(self, definitions, org):
        with pytest.raises(NotFoundError):
            definitions.create_from_template("no-such-template", org.id)

    def test_template_reference_validation(self, definitions, org):
        with pytest.raises(InvalidReferenceError):
            definitions.create_from_template("basic-linear-3-step", org.id, department_id="nope")

    def test_import_all(self, definitions, templates, org, complaint_type):
        created = definitions.import_all(org.id, complaint_type_id=complaint_type.id)
        assert len(created) == len(templates.list_all())
        assert all(d.complaint_type_id == complaint_type.id for d in created)
