"""Variable store tests"""
import pytest

from descsync.core.errors import ValidationError
from descsync.models.video_variable import VideoVariable
from descsync.services.variable_store import (
    ensure_variables_for_assignment, list_for_video, upsert_values, values_for_video
)


def _rows(db_session, video):
    return {
        (row.template_id, row.variable_name): row.variable_value
        for row in db_session.query(VideoVariable).filter(VideoVariable.video_id == video.id).all()
    }


@pytest.mark.critical
class TestBackfill:

    def test_creates_empty_rows_for_each_template_variable(
        self, db_session, test_user, test_channel, make_template, make_container, make_video
    ):
        intro = make_template(test_user, "Hi {{guest}} from {{city}}")
        outro = make_template(test_user, "Sponsor: {{sponsor}} {{guest}}")
        container = make_container(test_user, [intro, outro])
        video = make_video(test_channel, "abc")

        created = ensure_variables_for_assignment(db_session, video, container)
        db_session.commit()

        assert created == 4
        assert _rows(db_session, video) == {
            (intro.id, "guest"): "",
            (intro.id, "city"): "",
            (outro.id, "sponsor"): "",
            (outro.id, "guest"): "",
        }

    def test_existing_values_are_never_touched(
        self, db_session, test_user, test_channel, make_template, make_container, make_video
    ):
        template = make_template(test_user, "{{x}} and {{y}}")
        container = make_container(test_user, [template])
        video = make_video(test_channel, "abc")
        upsert_values(db_session, video, [{"template_id": template.id, "name": "x", "value": "hello"}])
        db_session.commit()

        ensure_variables_for_assignment(db_session, video, container)
        ensure_variables_for_assignment(db_session, video, container)
        db_session.commit()

        assert _rows(db_session, video) == {(template.id, "x"): "hello", (template.id, "y"): ""}

    def test_system_defaults_get_no_rows(
        self, db_session, test_user, test_channel, make_template, make_container, make_video
    ):
        template = make_template(test_user, "https://youtu.be/{{video-id}}")
        container = make_container(test_user, [template])
        video = make_video(test_channel, "abc123")

        assert ensure_variables_for_assignment(db_session, video, container) == 0
        assert _rows(db_session, video) == {}


@pytest.mark.high
class TestUpsert:

    def test_updates_only_the_value(self, db_session, test_user, test_channel, make_template, make_video):
        template = make_template(test_user, "{{x}}")
        video = make_video(test_channel, "abc")

        upsert_values(db_session, video, [{"template_id": template.id, "name": "x", "value": "one"}])
        upsert_values(db_session, video, [{"template_id": template.id, "name": " x ", "value": "two"}])
        db_session.commit()

        assert _rows(db_session, video) == {(template.id, "x"): "two"}

    def test_rejects_template_of_another_user(
        self, db_session, make_user, test_channel, make_template, make_video
    ):
        stranger = make_user("stranger@example.com")
        foreign = make_template(stranger, "{{x}}")
        video = make_video(test_channel, "abc")

        with pytest.raises(ValidationError):
            upsert_values(db_session, video, [{"template_id": foreign.id, "name": "x", "value": "v"}])

    def test_rejects_unknown_template(self, db_session, test_channel, make_video):
        video = make_video(test_channel, "abc")
        with pytest.raises(ValidationError):
            upsert_values(db_session, video, [{"template_id": 9999, "name": "x", "value": "v"}])

    def test_list_includes_template_identity(self, db_session, test_user, test_channel, make_template, make_video):
        template = make_template(test_user, "{{x}}", name="Intro")
        video = make_video(test_channel, "abc")
        upsert_values(db_session, video, [{"template_id": template.id, "name": "x", "value": "v"}])
        db_session.commit()

        [entry] = list_for_video(db_session, video)
        assert entry["name"] == "x"
        assert entry["value"] == "v"
        assert entry["template"] == {"id": template.id, "name": "Intro"}


@pytest.mark.medium
def test_first_non_empty_value_in_container_order_wins(db_session, test_user, test_channel, make_template, make_video):
    first = make_template(test_user, "{{link}}")
    second = make_template(test_user, "{{link}} again")
    third = make_template(test_user, "{{link}} once more")
    video = make_video(test_channel, "abc")
    upsert_values(db_session, video, [
        {"template_id": first.id, "name": "link", "value": ""},
        {"template_id": second.id, "name": "link", "value": "https://second"},
        {"template_id": third.id, "name": "link", "value": "https://third"},
    ])
    db_session.commit()

    assert values_for_video(db_session, video, [first, second, third]) == {"link": "https://second"}


@pytest.mark.medium
def test_stored_empty_value_is_kept_and_missing_row_is_left_out(db_session, test_user, test_channel, make_template, make_video):
    template = make_template(test_user, "{{sponsor}} {{guest}}")
    video = make_video(test_channel, "abc")
    upsert_values(db_session, video, [{"template_id": template.id, "name": "sponsor", "value": ""}])
    db_session.commit()

    assert values_for_video(db_session, video, [template]) == {"sponsor": ""}
