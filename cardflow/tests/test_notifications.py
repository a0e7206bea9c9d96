import pytest
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator

from cardflow.models import Notification
from cardflow.realtime.consumers import NotificationsConsumer
from cardflow.services.notifications import NotificationKind, emit, intent, recipient_group

pytestmark = pytest.mark.django_db


def test_emit_writes_outbox_and_broadcasts_after_commit(applicant, django_capture_on_commit_callbacks):
    layer = get_channel_layer()
    channel = async_to_sync(layer.new_channel)()
    async_to_sync(layer.group_add)(recipient_group(applicant.pk), channel)

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        emit([intent(applicant.pk, NotificationKind.DOCUMENT_APPROVED, label='Valid ID')])
        assert Notification.objects.filter(recipient=applicant, kind='document_approved').count() == 1
    assert len(callbacks) == 1

    message = async_to_sync(layer.receive)(channel)
    assert message == {
        'type': 'notification.intent',
        'recipientId': applicant.pk,
        'kind': 'document_approved',
        'payload': {'label': 'Valid ID'},
    }


def test_emit_nothing_schedules_nothing(django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks() as callbacks:
        assert emit([]) == []
    assert callbacks == []
    assert not Notification.objects.exists()


def test_consumer_refuses_anonymous_sockets():
    async def scenario():
        communicator = WebsocketCommunicator(NotificationsConsumer.as_asgi(), '/ws/notifications/')
        connected, code = await communicator.connect()
        assert not connected
        assert code == 4001

    async_to_sync(scenario)()


def test_consumer_forwards_intents_for_its_user(applicant):
    async def scenario():
        communicator = WebsocketCommunicator(NotificationsConsumer.as_asgi(), '/ws/notifications/')
        communicator.scope['user'] = applicant
        connected, _ = await communicator.connect()
        assert connected
        assert await communicator.receive_json_from() == {'type': 'welcome', 'recipientId': applicant.pk}

        await get_channel_layer().group_send(recipient_group(applicant.pk), {
            'type': 'notification.intent',
            'recipientId': applicant.pk,
            'kind': 'orientation_scheduled',
            'payload': {'applicationId': 1},
        })
        assert await communicator.receive_json_from() == {
            'type': 'notification',
            'recipientId': applicant.pk,
            'kind': 'orientation_scheduled',
            'payload': {'applicationId': 1},
        }
        await communicator.disconnect()

    async_to_sync(scenario)()
