import unittest
from unittest import mock
from cloudformation_pilot import cfn_stack, projectors, util
from . import common_class
from .common_class import changeset_page, stack_event


class TestDescribeStacks(unittest.TestCase):
    @mock.patch('cloudformation_pilot.util.session')
    def test_concrete_name(self, mock_session):
        c = mock_session.client.return_value
        c.describe_stacks.return_value = {'Stacks': [common_class.described_stack()]}
        stacks = cfn_stack.describe_stacks('test-stack', common_class.fake_context())
        self.assertEqual(len(stacks), 1)
        c.describe_stacks.assert_called_once_with(StackName='test-stack')

    @mock.patch('cloudformation_pilot.util.session')
    def test_wildcard(self, mock_session):
        c = mock_session.client.return_value
        c.describe_stacks.side_effect = [
            {'Stacks': [common_class.described_stack('app-web')], 'NextToken': 't1'},
            {'Stacks': [common_class.described_stack('db-main'), common_class.described_stack('app-worker')]},
        ]
        stacks = cfn_stack.describe_stacks('app-*', common_class.fake_context())
        self.assertEqual([xs['StackName'] for xs in stacks], ['app-web', 'app-worker'])
        c.describe_stacks.assert_called_with(NextToken='t1')

    @mock.patch('cloudformation_pilot.util.session')
    def test_wildcard_without_matches(self, mock_session):
        mock_session.client.return_value.describe_stacks.return_value = {
            'Stacks': [common_class.described_stack('db-main')]}
        self.assertEqual(cfn_stack.describe_stacks('app-*', common_class.fake_context()), [])

    @mock.patch('cloudformation_pilot.util.session')
    def test_not_found(self, mock_session):
        mock_session.client.return_value.describe_stacks.side_effect = common_class.client_error(
            'ValidationError', 'Stack with id missing does not exist')
        with self.assertRaises(util.StackNotFound):
            cfn_stack.get_stack('missing', common_class.fake_context())

    @mock.patch('cloudformation_pilot.util.session')
    def test_other_errors_propagate(self, mock_session):
        mock_session.client.return_value.describe_stacks.side_effect = common_class.client_error(
            'AccessDenied', 'Not allowed')
        with self.assertRaises(Exception) as e:
            cfn_stack.get_stack('test-stack', common_class.fake_context())
        self.assertNotIsInstance(e.exception, util.StackNotFound)


class TestParameterStrings(unittest.TestCase):
    def test_parameters(self):
        params = cfn_stack.parse_parameter_string(
            '[{"ParameterKey": "Env", "ParameterValue": "prod"}, {"ParameterKey": "Size"}]')
        self.assertEqual(params[0], projectors.StackParameter('Env', 'prod'))
        self.assertEqual(cfn_stack.parameters_map(params), {'Env': 'prod', 'Size': None})
        self.assertEqual(cfn_stack.parse_parameter_string(''), [])

    def test_bad_parameters(self):
        for text in ['not json', '{"ParameterKey": "Env"}', '[{"Key": "Env"}]']:
            with self.assertRaises(util.InvalidParameters, msg=f'[{text}] must be rejected'):
                cfn_stack.parse_parameter_string(text)

    def test_tags(self):
        self.assertEqual(cfn_stack.parse_tag_string('[{"Key": "Owner", "Value": 42}, {"Key": "Team"}]'),
                         [{'Key': 'Owner', 'Value': '42'}, {'Key': 'Team', 'Value': ''}])
        with self.assertRaises(util.InvalidParameters):
            cfn_stack.parse_tag_string('[{"Value": "x"}]')


class TestDeployInfo(unittest.TestCase):
    def test_cleaned_stack_name(self):
        d = cfn_stack.DeployInfo('arn:aws:cloudformation:ap-southeast-2:123456789012:stack/test-stack/abcd')
        self.assertEqual(d.cleaned_stack_name, 'test-stack')
        self.assertEqual(cfn_stack.DeployInfo('test-stack').cleaned_stack_name, 'test-stack')

    @mock.patch('cloudformation_pilot.util.session')
    def test_create_change_set(self, mock_session):
        c = mock_session.client.return_value
        c.create_change_set.return_value = {'Id': 'cs-id', 'StackId': 'stack-arn'}
        d = cfn_stack.DeployInfo('test-stack', 'pilot-cs', template='Resources: {}',
                                 parameters=[projectors.StackParameter('Env', 'prod')],
                                 tags=[{'Key': 'Owner', 'Value': 'ops'}])
        d.is_new = True
        self.assertEqual(d.create_change_set(common_class.fake_context()), 'cs-id')
        c.create_change_set.assert_called_once_with(
            StackName='test-stack', ChangeSetName='pilot-cs', ChangeSetType='CREATE',
            Capabilities=['CAPABILITY_AUTO_EXPAND'], TemplateBody='Resources: {}',
            Parameters=[{'ParameterKey': 'Env', 'ParameterValue': 'prod'}], Tags=[{'Key': 'Owner', 'Value': 'ops'}])
        self.assertEqual(d.stack_arn, 'stack-arn')

    @mock.patch('cloudformation_pilot.util.session')
    def test_previous_template_and_url(self, mock_session):
        c = mock_session.client.return_value
        c.create_change_set.return_value = {'Id': 'cs-id'}
        cfn_stack.DeployInfo('test-stack', 'pilot-cs').create_change_set(common_class.fake_context())
        self.assertTrue(c.create_change_set.call_args.kwargs['UsePreviousTemplate'])
        self.assertEqual(c.create_change_set.call_args.kwargs['ChangeSetType'], 'UPDATE')
        cfn_stack.DeployInfo('test-stack', 'pilot-cs', template_url='https://s3/t.yaml') \
            .create_change_set(common_class.fake_context())
        self.assertEqual(c.create_change_set.call_args.kwargs['TemplateURL'], 'https://s3/t.yaml')
        with self.assertRaises(util.InvalidParameters):
            cfn_stack.DeployInfo('test-stack', 'pilot-cs', template='x', template_url='y') \
                .create_change_set(common_class.fake_context())

    @mock.patch('cloudformation_pilot.util.session')
    def test_readiness(self, mock_session):
        c = mock_session.client.return_value
        c.describe_stacks.return_value = {'Stacks': [common_class.described_stack(status='UPDATE_ROLLBACK_COMPLETE')]}
        d = cfn_stack.DeployInfo('test-stack')
        self.assertEqual(d.is_ready_for_update(common_class.fake_context()), (True, 'UPDATE_ROLLBACK_COMPLETE'))
        self.assertFalse(d.is_ongoing(common_class.fake_context()))
        self.assertFalse(d.is_new_stack(common_class.fake_context()))
        c.describe_stacks.return_value = {'Stacks': [common_class.described_stack(status='REVIEW_IN_PROGRESS')]}
        self.assertTrue(d.is_new_stack(common_class.fake_context()))

    @mock.patch('cloudformation_pilot.util.session')
    def test_missing_stack_is_new(self, mock_session):
        mock_session.client.return_value.describe_stacks.side_effect = common_class.client_error(
            'ValidationError', 'Stack with id test-stack does not exist')
        d = cfn_stack.DeployInfo('test-stack')
        self.assertTrue(d.is_new_stack(common_class.fake_context()))
        self.assertEqual(d.is_ready_for_update(common_class.fake_context()), (False, ''))

    @mock.patch('cloudformation_pilot.util.session')
    def test_wait_until_changeset_done(self, mock_session):
        c = mock_session.client.return_value
        c.describe_change_set.side_effect = [
            changeset_page('CREATE_PENDING'),
            changeset_page('CREATE_COMPLETE', next_token='t1'),
            changeset_page('CREATE_COMPLETE'),
        ]
        clock = common_class.FakeClock()
        d = cfn_stack.DeployInfo('test-stack', 'pilot-cs')
        cs = d.wait_until_changeset_done(common_class.fake_context(clock), poll_interval=2)
        self.assertEqual(clock.sleeps, [2, 2])
        self.assertIs(d.changeset, cs)
        self.assertEqual(d.stack_arn, cs.stack_id)
        c.describe_change_set.assert_called_with(ChangeSetName='pilot-cs', StackName='test-stack', NextToken='t1')

    @mock.patch('cloudformation_pilot.util.session')
    def test_get_execution_times(self, mock_session):
        mock_session.client.return_value.describe_stack_events.return_value = {'StackEvents': [
            stack_event('Bucket', 'AWS::S3::Bucket', 'CREATE_COMPLETE', 30),
            stack_event('Bucket', 'AWS::S3::Bucket', 'CREATE_IN_PROGRESS', 20),
            stack_event('Old', 'AWS::S3::Bucket', 'CREATE_COMPLETE', -5),
        ]}
        d = cfn_stack.DeployInfo('test-stack', 'pilot-cs')
        d.add_changeset([changeset_page()])
        times = d.get_execution_times(common_class.fake_context())
        self.assertEqual(list(times.keys()), ['AWS  S3  Bucket (Bucket)'])
        self.assertEqual(times['AWS  S3  Bucket (Bucket)'],
                         {'CREATE_COMPLETE': common_class.at(30), 'CREATE_IN_PROGRESS': common_class.at(20)})

    @mock.patch('cloudformation_pilot.util.session')
    def test_delete_stack(self, mock_session):
        c = mock_session.client.return_value
        d = cfn_stack.DeployInfo('test-stack')
        self.assertTrue(d.delete_stack(common_class.fake_context()))
        c.delete_stack.side_effect = common_class.client_error('AccessDenied', 'Not allowed', 'DeleteStack')
        self.assertFalse(d.delete_stack(common_class.fake_context()), 'Delete failures must be reported, not raised')
