import unittest
from unittest import mock
from cloudformation_pilot import cloud_control, identity_center, util
from . import common_class

INSTANCE_ARN = 'arn:aws:sso:::instance/ssoins-1'
PERMISSION_SET_ARN = 'arn:aws:sso:::permissionSet/ssoins-1/ps-1'


def setup_sso(mock_session):
    c = mock_session.client.return_value
    c.list_instances.return_value = {'Instances': [{'InstanceArn': INSTANCE_ARN}]}
    c.list_permission_sets.return_value = {'PermissionSets': [PERMISSION_SET_ARN]}
    c.list_accounts.return_value = {'Accounts': [{'Id': '111111111111'}, {'Id': '222222222222'}]}
    c.list_account_assignments.side_effect = lambda **kwargs: {'AccountAssignments': [
        {'AccountId': kwargs['AccountId'], 'PrincipalType': 'GROUP', 'PrincipalId': 'g-1'}]}
    return c


class TestIdentityCenter(unittest.TestCase):
    @mock.patch('cloudformation_pilot.util.session')
    def test_permission_sets(self, mock_session):
        setup_sso(mock_session)
        self.assertEqual(identity_center.get_permission_set_arns(common_class.fake_context()),
                         {f'{INSTANCE_ARN}|{PERMISSION_SET_ARN}': identity_center.PERMISSION_SET_TYPE})

    @mock.patch('cloudformation_pilot.util.session')
    def test_assignments(self, mock_session):
        setup_sso(mock_session)
        assignments = identity_center.get_assignment_arns(common_class.fake_context())
        self.assertEqual(sorted(assignments.keys()), [
            f'{INSTANCE_ARN}|111111111111|AWS_ACCOUNT|{PERMISSION_SET_ARN}|GROUP|g-1',
            f'{INSTANCE_ARN}|222222222222|AWS_ACCOUNT|{PERMISSION_SET_ARN}|GROUP|g-1',
        ])

    @mock.patch('cloudformation_pilot.util.session')
    def test_no_instance(self, mock_session):
        mock_session.client.return_value.list_instances.return_value = {'Instances': []}
        with self.assertRaises(util.ResourceLookupFailed):
            identity_center.get_sso_instance_arn(common_class.fake_context())


class TestCloudControl(unittest.TestCase):
    @mock.patch('cloudformation_pilot.util.session')
    def test_list_all_resources(self, mock_session):
        setup_sso(mock_session)
        self.assertEqual(len(cloud_control.list_all_resources(identity_center.PERMISSION_SET_TYPE,
                                                              common_class.fake_context())), 1)
        self.assertEqual(cloud_control.list_all_resources('AWS::S3::Bucket', common_class.fake_context()), {})


    @mock.patch('cloudformation_pilot.util.session')
    def test_get_resource_properties(self, mock_session):
        c = mock_session.client.return_value
        c.get_resource.return_value = {
            'TypeName': 'AWS::S3::Bucket',
            'ResourceDescription': {'Identifier': 'b', 'Properties': '{"BucketName": "b", "Tags": []}'}}
        self.assertEqual(cloud_control.get_resource_properties('AWS::S3::Bucket', 'b', common_class.fake_context()),
                         {'BucketName': 'b', 'Tags': []})
        c.get_resource.assert_called_once_with(TypeName='AWS::S3::Bucket', Identifier='b')
        mock_session.client.assert_called_with('cloudcontrol')

    @mock.patch('cloudformation_pilot.util.session')
    def test_unreadable_properties(self, mock_session):
        mock_session.client.return_value.get_resource.return_value = {
            'ResourceDescription': {'Identifier': 'b', 'Properties': '{broken'}}
        with self.assertRaises(util.ResourceLookupFailed):
            cloud_control.get_resource_properties('AWS::S3::Bucket', 'b', common_class.fake_context())
