import unittest
from unittest import mock
from cloudformation_pilot import deployer
from . import common_class

CHANGESET_URL = 'https://console.aws.amazon.com/cloudformation/home?region=us-west-2#/stacks/changesets/changes' \
    '?stackId=arn:aws:cloudformation:us-west-2:123456789012:stack/my-stack/def456' \
    '&changeSetId=arn:aws:cloudformation:us-west-2:123456789012:changeSet/my-changeset/abc123'


def setup_identity(mock_session):
    mock_session.client.return_value.get_caller_identity.return_value = {
        'Account': '123456789012', 'Arn': 'arn:aws:iam::123456789012:user/ci'}
    mock_session.region_name = 'ap-southeast-2'


class TestStackPilotArgs(unittest.TestCase):
    def test_settings_are_loaded(self):
        s = common_class.CommonClass().load_init('history')
        self.assertFalse(s.settings.get_bool('logging.enabled'))
        self.assertEqual(s.settings.get_int('drift.max-attempts'), 3)

    def test_template_and_url_conflict(self):
        with self.assertRaises(SystemExit) as e:
            common_class.CommonClass().load_init('deploy', '-n', 'test-stack', '-f', 't.yaml', '-u', 'https://s3/t')
        self.assertEqual(e.exception.code, 4)

    def test_bad_parameters(self):
        with self.assertRaises(SystemExit) as e:
            common_class.CommonClass().load_init('deploy', '-n', 'test-stack', '-p', '{broken')
        self.assertEqual(e.exception.code, 4)

    def test_missing_settings_file(self):
        with self.assertRaises(SystemExit) as e:
            common_class.CommonClass().load_init('--config', 'test/fixtures/missing.yaml', 'history')
        self.assertEqual(e.exception.code, 4)


class TestStackPilotCommands(unittest.TestCase):
    def test_changeset_url(self):
        s = common_class.CommonClass().load_init('changeset-url', '--url', CHANGESET_URL)
        self.assertIsNone(s.run())

    def test_bad_changeset_url(self):
        s = common_class.CommonClass().load_init('changeset-url', '--url', 'https://example.com/nothing')
        with self.assertRaises(SystemExit) as e:
            s.run()
        self.assertEqual(e.exception.code, 8)

    def test_deploy_needs_a_mode(self):
        s = common_class.CommonClass().load_init('deploy', '-n', 'test-stack')
        with self.assertRaises(SystemExit) as e:
            s.run()
        self.assertEqual(e.exception.code, 8)

    @mock.patch('cloudformation_pilot.deployer.StackDeployment')
    @mock.patch('cloudformation_pilot.util.session')
    def test_deploy(self, mock_session, mock_deployment):
        setup_identity(mock_session)
        mock_deployment.return_value.run.return_value = deployer.DeploymentOutcome(deployer.OUTCOME_CHANGESET_CREATED)
        s = common_class.CommonClass().load_init('deploy', '-n', 'test-stack', '--create-changeset',
                                                 '-p', '[{"ParameterKey": "Env", "ParameterValue": "prod"}]')
        self.assertIsNone(s.run())
        d = mock_deployment.call_args.args[0]
        self.assertEqual(d.stack_name, 'test-stack')
        self.assertTrue(d.changeset_name.startswith('pilot-'))
        self.assertEqual(d.parameters[0].key, 'Env')
        kwargs = mock_deployment.call_args.kwargs
        self.assertEqual(kwargs['account'], '123456789012')
        self.assertEqual(kwargs['region'], 'ap-southeast-2')
        self.assertTrue(kwargs['create_only'])
        self.assertEqual(kwargs['changeset_poll_interval'], 1)

    @mock.patch('cloudformation_pilot.deployer.StackDeployment')
    @mock.patch('cloudformation_pilot.util.session')
    def test_failed_deploy(self, mock_session, mock_deployment):
        setup_identity(mock_session)
        mock_deployment.return_value.run.return_value = deployer.DeploymentOutcome(deployer.OUTCOME_DEPLOYMENT_FAILED)
        s = common_class.CommonClass().load_init('deploy', '-n', 'test-stack', '--non-interactive',
                                                 '-f', 'test/fixtures/network.cf.yaml')
        with self.assertRaises(SystemExit) as e:
            s.run()
        self.assertEqual(e.exception.code, 8)
        self.assertIn('AWSTemplateFormatVersion', mock_deployment.call_args.args[0].template)

    @mock.patch('cloudformation_pilot.drift.StackDrift')
    def test_drift_ignore_tags(self, mock_drift):
        mock_drift.return_value.detect.return_value = []
        s = common_class.CommonClass().load_init('drift', '-n', 'test-stack', '--ignore-tags', 'Name', 'Vpc:Owner')
        s.run()
        kwargs = mock_drift.call_args.kwargs
        self.assertEqual(kwargs['ignore_tags'], ['aws:cloudformation:stack-name', 'Name', 'Vpc:Owner'])
        self.assertEqual(kwargs['blackhole_ignore'], ['pcx-0123456789'])
        self.assertEqual(kwargs['max_attempts'], 3)
        mock_drift.return_value.detect.assert_called_once_with(s.ctx, results_only=False)

    @mock.patch('cloudformation_pilot.stack_pilot.log')
    @mock.patch('cloudformation_pilot.util.session')
    def test_resources_with_properties(self, mock_session, mock_log):
        c = mock_session.client.return_value
        c.describe_stacks.return_value = {'Stacks': [common_class.described_stack()]}
        c.describe_stack_resources.return_value = {'StackResources': [
            {'ResourceType': 'AWS::S3::Bucket', 'LogicalResourceId': 'Bucket', 'PhysicalResourceId': 'bucket-1',
             'ResourceStatus': 'CREATE_COMPLETE'},
            {'ResourceType': 'Custom::Thing', 'LogicalResourceId': 'Thing', 'PhysicalResourceId': 'thing-1',
             'ResourceStatus': 'CREATE_COMPLETE'},
        ]}

        def get_resource(TypeName, Identifier):
            if TypeName == 'Custom::Thing':
                raise common_class.client_error('TypeNotFoundException', 'Not supported', 'GetResource')
            return {'ResourceDescription': {'Identifier': Identifier, 'Properties': '{"BucketName": "bucket-1"}'}}
        c.get_resource.side_effect = get_resource

        s = common_class.CommonClass().load_init('resources', '-n', 'test-stack', '--properties')
        self.assertIsNone(s.run())
        info = [xc.args[0] for xc in mock_log.info.call_args_list]
        self.assertIn('  BucketName: "bucket-1"', info)
        self.assertEqual(mock_log.warning.call_count, 1)
        self.assertIn('Thing', mock_log.warning.call_args.args[0])

    @mock.patch('cloudformation_pilot.util.session')
    def test_resources_without_properties(self, mock_session):
        c = mock_session.client.return_value
        c.describe_stacks.return_value = {'Stacks': [common_class.described_stack()]}
        c.describe_stack_resources.return_value = {'StackResources': [
            {'ResourceType': 'AWS::S3::Bucket', 'LogicalResourceId': 'Bucket', 'PhysicalResourceId': 'bucket-1',
             'ResourceStatus': 'CREATE_COMPLETE'}]}
        common_class.CommonClass().load_init('resources', '-n', 'test-stack').run()
        c.get_resource.assert_not_called()
