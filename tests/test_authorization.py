from unittest.mock import MagicMock

import pytest

from agentmem.services.authorization import (BearerKeyAuthorizer, CompositeAuthorizer, Credentials, SessionAuthorizer)
from agentmem.services.memory_management import MemoryAuthorizationError


@pytest.fixture
def composite(instances, configs):
    return CompositeAuthorizer([SessionAuthorizer(instances), BearerKeyAuthorizer(configs)])


class TestBearerKeyAuthorizer:

    @pytest.mark.parametrize('header, expected', [
        ('Bearer abc', 'abc'),
        ('Bearer   abc  ', 'abc'),
        ('Basic abc', None),
        ('Bearer ', None),
        (None, None),
    ])
    def test_parse_bearer(self, header, expected):
        assert BearerKeyAuthorizer.parse_bearer(header) == expected

    def test_current_key_is_accepted(self, configs):
        key = configs.get_or_create('inst-1').api_key

        assert BearerKeyAuthorizer(configs).authorize('inst-1', Credentials(authorization=f'Bearer {key}'))

    def test_rotated_key_is_rejected(self, configs):
        key = configs.get_or_create('inst-1').api_key
        configs.rotate_api_key('inst-1')

        assert not BearerKeyAuthorizer(configs).authorize('inst-1', Credentials(authorization=f'Bearer {key}'))


class TestCompositeAuthorizer:

    def test_session_owner_wins_first(self, composite, instances):
        instances.owners['inst-1'] = 'owner@example.com'

        granted = composite.require('inst-1', Credentials(user_email='owner@example.com', authorization='Bearer junk'))

        assert granted == 'session'

    def test_falls_back_to_bearer_key(self, composite, instances, configs):
        instances.owners['inst-1'] = 'owner@example.com'
        key = configs.get_or_create('inst-1').api_key

        granted = composite.require('inst-1', Credentials(user_email='stranger@example.com',
                                                          authorization=f'Bearer {key}'))

        assert granted == 'bearer'

    def test_order_is_fixed(self):
        first = MagicMock(name='first')
        first.name = 'first'
        first.authorize.return_value = False
        second = MagicMock(name='second')
        second.name = 'second'
        second.authorize.return_value = True
        never = MagicMock(name='never')

        assert CompositeAuthorizer([first, second, never]).require('inst-1', Credentials()) == 'second'
        never.authorize.assert_not_called()

    def test_nobody_authorized_raises(self, composite, configs):
        configs.get_or_create('inst-1')

        with pytest.raises(MemoryAuthorizationError):
            composite.require('inst-1', Credentials(authorization='Bearer wrong'))

    def test_key_for_another_instance_is_rejected(self, composite, configs):
        key = configs.get_or_create('inst-2').api_key
        configs.get_or_create('inst-1')

        with pytest.raises(MemoryAuthorizationError):
            composite.require('inst-1', Credentials(authorization=f'Bearer {key}'))
