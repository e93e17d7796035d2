import dataclasses
import logging
from datetime import datetime, timezone

import pytest

from devicewatch.messages_service import (
    CountReport,
    CreateMessageResult,
    MessageReport,
    MessagesService,
    make_comparator,
)
from devicewatch.models import CountByDeviceID, Device, Message, MonthReportRow, Tag
from devicewatch.repository import RepositoryError

LOG = logging.getLogger("test-messages-service")


class FakeTx:
    def __init__(self, repo):
        self.repo = repo

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def commit(self):
        self.repo.commits += 1

    def rollback(self):
        pass


class FakeTagsTx(FakeTx):
    def read(self):
        if self.repo.fail_read:
            raise RepositoryError("read failed")
        return [dataclasses.replace(tag) for tag in self.repo.tags]

    def create(self, tag):
        self.repo.next_id += 1
        stored = dataclasses.replace(tag, id=self.repo.next_id)
        self.repo.tags.append(stored)
        return stored

    def delete(self, tag_id):
        self.repo.tags = [tag for tag in self.repo.tags if tag.id != tag_id]


class FakeTagsRepo:
    def __init__(self, tags=()):
        self.tags = list(tags)
        self.fail_read = False
        self.next_id = 100
        self.commits = 0

    def begin(self):
        return FakeTagsTx(self)


class FakeDevicesTx(FakeTx):
    def read(self):
        return list(self.repo.devices)


class FakeDevicesRepo:
    def __init__(self, devices=()):
        self.devices = list(devices)
        self.commits = 0

    def begin(self):
        return FakeDevicesTx(self)


class FakeMessagesTx(FakeTx):
    def create(self, message):
        self.repo.stored.append(message)

    def get_all_by_period(self, start, end):
        self.repo.period_args = (start, end)
        return list(self.repo.rows)

    def get_all_by_device_id(self, device_id):
        self.repo.device_arg = device_id
        return [row for row in self.repo.rows if row.device_id == device_id]

    def get_count_by_message_type(self, message_type):
        self.repo.type_arg = message_type
        return list(self.repo.counts)

    def month_report(self, now=None):
        return list(self.repo.report)


class FakeMessagesRepo:
    def __init__(self):
        self.stored = []
        self.rows = []
        self.counts = []
        self.report = []
        self.commits = 0

    def begin(self):
        return FakeMessagesTx(self)


def threshold_tag(**overrides):
    values = dict(
        id=1,
        name="temperature",
        device_id=1,
        regexp=r"temp=(\d+)",
        compare_type=">",
        value="50",
        array_index=1,
        subject="Overheat",
        severity_level="critical",
    )
    values.update(overrides)
    return Tag(**values)


def make_service(tags=(), devices=()):
    messages = FakeMessagesRepo()
    tags_repo = FakeTagsRepo(tags)
    devices_repo = FakeDevicesRepo(devices)
    service = MessagesService(messages, tags_repo, devices_repo, LOG)
    return service, messages, tags_repo, devices_repo


def test_equal_comparator_compares_text():
    equal = make_comparator("=")
    assert equal("up", "up") is True
    assert equal("up", "down") is False


def test_threshold_comparators_compare_numbers():
    assert make_comparator(">")("10", "9") is True
    assert make_comparator("<")("10", "9") is False
    assert make_comparator("<")("1.5", "2") is True


def test_unparsable_number_counts_as_zero():
    assert make_comparator(">")("abc", "-1") is True
    assert make_comparator("<")("abc", "1") is True


def test_unknown_compare_type_is_rejected():
    with pytest.raises(ValueError):
        make_comparator("!=")


def test_message_without_tags_is_stored_without_notification():
    service, messages, _, _ = make_service()
    result = service.create(Message(device_id=1, message="hello", message_type="info"))
    assert result == CreateMessageResult(text="", subject="", need_notify=False)
    assert [m.message for m in messages.stored] == ["hello"]
    assert messages.stored[0].severity_level == ""


def test_fired_threshold_tag_sets_severity_and_arms_reverse_tag():
    service, messages, tags_repo, _ = make_service(tags=[threshold_tag()])
    result = service.create(Message(device_id=1, message="temp=70"))
    assert result == CreateMessageResult(text="temp=70", subject="Overheat", need_notify=True)
    assert messages.stored[0].severity_level == "critical"
    reversed_tags = [tag for tag in tags_repo.tags if tag.subject == "OK"]
    assert len(reversed_tags) == 1
    assert reversed_tags[0].compare_type == "<"
    assert reversed_tags[0].severity_level == "info"
    assert reversed_tags[0].regexp == r"temp=(\d+)"


def test_matched_tag_that_does_not_fire_still_notifies():
    service, messages, tags_repo, _ = make_service(tags=[threshold_tag()])
    result = service.create(Message(device_id=1, message="temp=30"))
    assert result.need_notify is True
    assert result.subject == "Overheat"
    assert messages.stored[0].severity_level == ""
    assert len(tags_repo.tags) == 1


def test_fired_ok_tag_is_deleted():
    ok_tag = threshold_tag(id=7, compare_type="<", subject="OK", severity_level="info")
    service, messages, tags_repo, _ = make_service(tags=[ok_tag])
    result = service.create(Message(device_id=1, message="temp=20"))
    assert result.subject == "OK"
    assert messages.stored[0].severity_level == "info"
    assert tags_repo.tags == []


def test_equal_tag_does_not_arm_a_reverse_tag():
    tag = threshold_tag(regexp=r"state=(\w+)", compare_type="=", value="down")
    service, messages, tags_repo, _ = make_service(tags=[tag])
    service.create(Message(device_id=1, message="state=down"))
    assert messages.stored[0].severity_level == "critical"
    assert len(tags_repo.tags) == 1


def test_tags_of_other_devices_are_ignored():
    service, messages, _, _ = make_service(tags=[threshold_tag(device_id=2)])
    result = service.create(Message(device_id=1, message="temp=90"))
    assert result.need_notify is False
    assert messages.stored[0].severity_level == ""


def test_tags_with_bad_compare_type_or_pattern_are_skipped():
    tags = [threshold_tag(id=1, compare_type="!"), threshold_tag(id=2, regexp="temp=(")]
    service, messages, _, _ = make_service(tags=tags)
    result = service.create(Message(device_id=1, message="temp=90"))
    assert result.need_notify is False


def test_array_index_out_of_range_raises_and_stores_nothing():
    service, messages, _, _ = make_service(tags=[threshold_tag(array_index=5)])
    with pytest.raises(ValueError):
        service.create(Message(device_id=1, message="temp=90"))
    assert messages.stored == []


def test_failed_tag_reload_leaves_no_active_tags():
    service, _, tags_repo, _ = make_service(tags=[threshold_tag()])
    tags_repo.fail_read = True
    service.update_tags()
    result = service.create(Message(device_id=1, message="temp=90"))
    assert result.need_notify is False


def test_reports_by_period_join_device_details():
    device = Device(id=1, name="router", device_type="switch", address="10.0.0.1", responsible=[3])
    service, messages, _, _ = make_service(devices=[device])
    service.update_devices()
    moment = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    messages.rows = [
        Message(device_id=1, message="up", message_type="info", got_at=moment),
        Message(device_id=9, message="down", message_type="error", got_at=moment),
    ]
    start = datetime(2024, 4, 1, tzinfo=timezone.utc)
    reports = service.get_all_by_period(start, moment)
    assert messages.period_args == (start, moment)
    assert reports[0] == MessageReport(1, "router", "switch", "10.0.0.1", [3], moment, "up", "info")
    assert reports[1].device_id == 9
    assert reports[1].name == "unknown device"
    assert reports[1].address == "unknown device"
    assert reports[1].responsible == []


def test_reports_by_device_id_pass_the_id_through():
    service, messages, _, _ = make_service()
    service.set_devices([Device(id=4, name="sensor", device_type="probe", address="10.0.0.4")])
    messages.rows = [Message(device_id=4, message="ping", message_type="info")]
    reports = service.get_all_by_device_id(4)
    assert messages.device_arg == 4
    assert [(r.name, r.message) for r in reports] == [("sensor", "ping")]


def test_count_report_joins_device_details():
    service, messages, _, _ = make_service()
    service.set_devices([Device(id=2, name="camera", device_type="cam", address="10.0.0.2")])
    messages.counts = [CountByDeviceID(device_id=2, count=5), CountByDeviceID(device_id=8, count=1)]
    reports = service.get_count_by_message_type("error")
    assert messages.type_arg == "error"
    assert reports[0] == CountReport(2, "camera", "cam", "10.0.0.2", [], 5)
    assert reports[1].name == "unknown device"
    assert reports[1].count == 1


def test_month_report_is_passed_through():
    service, messages, _, _ = make_service()
    messages.report = [MonthReportRow(device_id=3, message_type="error", total_messages=150)]
    assert service.month_report() == messages.report


def test_message_report_dict_keys():
    moment = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    report = MessageReport(1, "router", "switch", "10.0.0.1", [3], moment, "up", "info")
    data = report.to_dict()
    assert data["DeviceID"] == 1
    assert data["GotAt"] == "2024-05-01T12:00:00Z"
    assert data["MessageType"] == "info"
    assert data["Responsible"] == [3]


def test_count_report_dict_keys():
    data = CountReport(2, "camera", "cam", "10.0.0.2", None, 5).to_dict()
    assert data == {
        "DeviceID": 2,
        "Name": "camera",
        "DeviceType": "cam",
        "Address": "10.0.0.2",
        "Responsible": None,
        "Count": 5,
    }