#!/usr/bin/env python3
from cloudformation_pilot import util, config, cfn_stack, deployer, deployment_log, drift, \
    outputs, resources, stack_events, console_urls, cloud_control

import argparse
import json
import logging
import sys
from botocore.exceptions import ClientError
from colorama import init as init_colorama, Fore, Style
from .version import VERSION

log = logging.getLogger('stack-pilot')


class StackPilot(object):
    def configure_args(self):
        opts = argparse.ArgumentParser(description='Deploys Cloudformation stacks and reports on their drift')

        go = opts.add_argument_group('Operation parameters')
        go.add_argument('--config', help='Settings file, fog.yaml in the current directory if omitted')
        go.add_argument('-v', '--verbose', action='store_true', help='Be more verbose')
        go.add_argument('--no-color', action='store_true', help='Strip colors for basic terminals')
        go.add_argument('--timeout', type=float, help='Give up after this many seconds')
        go.add_argument('--version', action='version', version='%(prog)s ' + VERSION, help='Print version number')

        sp = opts.add_subparsers(dest='command', required=True)

        gd = sp.add_parser('deploy', help='Deploy a stack through a change set')
        gd.add_argument('-n', '--stackname', required=True, help='Stack name')
        gd.add_argument('-f', '--template', help='Path to the template file, previous template is used if omitted')
        gd.add_argument('-u', '--template-url', help='S3 URL of an uploaded template')
        gd.add_argument('-p', '--parameters', default='', help='Stack parameters as a JSON list')
        gd.add_argument('-t', '--tags', default='', help='Stack tags as a JSON list')
        gd.add_argument('-c', '--changeset-name', help='Change set name, generated if omitted')
        gd.add_argument('--dry-run', action='store_true', help='Create the change set, show it and delete it')
        gd.add_argument('--create-changeset', action='store_true', help='Create the change set and leave it')
        gd.add_argument('--non-interactive', action='store_true', help='Execute the change set without asking')

        gr = sp.add_parser('drift', help='Detect drift on a stack')
        gr.add_argument('-n', '--stackname', required=True, help='Stack name')
        gr.add_argument('--results-only', action='store_true', help='Use the latest drift detection results')
        gr.add_argument('--verbose-prefix-lists', action='store_true', help='Report routes to prefix lists')
        gr.add_argument('--ignore-tags', nargs='+', default=[], metavar='TAG',
            help='Tags to ignore, as Name, AWS::EC2::VPC:Name or LogicalId:Name')

        gh = sp.add_parser('history', help='Show the deployment log')
        gh.add_argument('-n', '--stackname', default='', help='Only show deployments of this stack')

        gx = sp.add_parser('exports', help='List stack exports and their importers')
        gx.add_argument('-n', '--stackname', default='', help='Stack name, wildcards allowed')
        gx.add_argument('-e', '--export', default='', help='Export name, wildcards allowed')

        gs = sp.add_parser('resources', help='List stack resources')
        gs.add_argument('-n', '--stackname', default='', help='Stack name, wildcards allowed')
        gs.add_argument('--properties', action='store_true', help='Show live properties through Cloud Control')

        ge = sp.add_parser('report', help='Summarise the deployment sessions of stacks')
        ge.add_argument('-n', '--stackname', default='', help='Stack name, wildcards allowed')

        gu = sp.add_parser('changeset-url', help='Describe the change set behind a console URL')
        gu.add_argument('--url', required=True, help='Console URL of the change set')

        return opts.parse_args()

    def setup_args(self):
        self.settings = config.Settings.load(self.o.config)
        self.ctx = util.OperationContext(timeout=self.o.timeout)
        if self.o.command == 'deploy':
            if self.o.template and self.o.template_url:
                raise util.InvalidParameters('Use either --template or --template-url, not both')
            self.parameters = cfn_stack.parse_parameter_string(self.o.parameters)
            self.tags = cfn_stack.parse_tag_string(self.o.tags)

    def setup_logging(self):
        if self.o.no_color:
            init_colorama(strip=True)
        log.setLevel(logging.DEBUG if self.o.verbose else logging.INFO)
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(logging.DEBUG if self.o.verbose else logging.INFO)
        if not self.o.no_color:
            ch.setFormatter(util.ColorFormatter('%(levelname)s %(message)s'))
        else:
            ch.setFormatter(logging.Formatter('%(levelname)s %(message)s'))
        log.addHandler(ch)

    def __init__(self):
        self.o = self.configure_args()
        self.setup_logging()
        log.info(f'{Fore.CYAN} >> Stack Pilot >> '
            f'Deploys Cloudformation stacks and watches them drift >> {Style.RESET_ALL}')
        log.info(' '.join(sys.argv))
        try:
            self.setup_args()
        except Exception as e:
            log.exception(str(e), exc_info=False)
            sys.exit(4)

    def read_template(self):
        if not self.o.template:
            return ''
        log.info(f'Reading template from {Fore.GREEN}{self.o.template}{Style.RESET_ALL}')
        try:
            with open(self.o.template, 'r') as f:
                return f.read()
        except OSError as e:
            raise util.InvalidParameters(f'Unable to read template {self.o.template}: {e}') from None

    def caller_identity(self):
        r = util.session.client('sts').get_caller_identity()
        return r['Account'], r['Arn']

    def log_writer(self):
        return deployment_log.DeploymentLogWriter(self.settings.get_string('logging.filename'),
                                                  self.settings.get_bool('logging.enabled'))

    def deploy_stack(self):
        if not (self.o.dry_run or self.o.create_changeset or self.o.non_interactive):
            raise util.InvalidParameters('Executing a change set requires --non-interactive, '
                'use --dry-run or --create-changeset to review it first')
        clock = util.Clock()
        account, deployer_arn = self.caller_identity()
        region = util.session.region_name
        changeset_name = self.o.changeset_name or f'pilot-{clock.now().strftime("%Y-%m-%dT%H-%M-%S")}'
        d = cfn_stack.DeployInfo(self.o.stackname, changeset_name, template=self.read_template(),
                                 template_url=self.o.template_url or '', parameters=self.parameters,
                                 tags=self.tags, is_dry_run=self.o.dry_run)
        writer = self.log_writer()
        if writer.enabled:
            previous = deployment_log.get_latest_successful(
                deployment_log.generate_deployment_name(account, region, self.o.stackname), writer.filename)
            if previous.deployment_name:
                log.info(f'Last successful deployment of {Fore.GREEN}{self.o.stackname}{Style.RESET_ALL} '
                    f'was at {util.rfc3339(previous.started_at)} by {previous.deployer}')
        s = deployer.StackDeployment(d, writer, account=account, region=region, deployer=deployer_arn,
                                     create_only=self.o.create_changeset,
                                     changeset_poll_interval=self.settings.get_int('changeset.poll-interval'),
                                     events_poll_interval=self.settings.get_int('events.poll-interval'),
                                     clock=clock)
        outcome = s.run(self.ctx)
        if not outcome.succeeded:
            raise util.DeploymentFailed(f'Deployment of {self.o.stackname} ended in {outcome.state}')

    def detect_drift(self):
        ignore_tags = self.settings.get_string_list('drift.ignore-tags') + self.o.ignore_tags
        s = drift.StackDrift(self.o.stackname,
                             poll_interval=self.settings.get_int('drift.poll-interval'),
                             max_attempts=self.settings.get_int('drift.max-attempts'),
                             ignore_tags=ignore_tags,
                             blackhole_ignore=self.settings.get_string_list('drift.ignore-blackholes'),
                             detect_unmanaged=self.settings.get_string_list('drift.detect-unmanaged-resources'),
                             ignore_unmanaged=self.settings.get_string_list('drift.ignore-unmanaged-resources'),
                             include_prefix_lists=self.o.verbose_prefix_lists)
        drifted = 0
        for xr in s.detect(self.ctx, results_only=self.o.results_only):
            if xr.verdict.in_sync:
                log.debug(f'{xr.resource_type} {xr.logical_id} is in sync')
                continue
            drifted += 1
            log.warning(f'{xr.resource_type} {Fore.GREEN}{xr.logical_id}{Style.RESET_ALL} '
                f'{Fore.MAGENTA}{xr.verdict.kind}{Style.RESET_ALL}')
            for xd in xr.verdict.reasons:
                log.warning(f'  {xd}')
        log.info(f'Stack {Fore.GREEN}{self.o.stackname}{Style.RESET_ALL} has {drifted} drifted resources')

    def show_history(self):
        for xl in deployment_log.read_all_logs(self.settings.get_string('logging.filename')):
            if self.o.stackname and xl.stack_name != self.o.stackname:
                continue
            log.info(f'{util.rfc3339(xl.started_at)} {xl.deployment_type} {Fore.GREEN}{xl.stack_name}{Style.RESET_ALL} '
                f'in {xl.account}/{xl.region} by {xl.deployer}: {Fore.MAGENTA}{xl.status}{Style.RESET_ALL}')
            for xc in xl.changes:
                log.info(f'  {xc.action} {xc.resource_type} {xc.logical_id}')
            for xf in xl.failures:
                log.error(f'  {xf.get("Type", "")} {xf.get("CfnName", "")}: {xf.get("Reason", "")}')

    def show_exports(self):
        for xe in outputs.get_exports(self.ctx, self.o.stackname, self.o.export):
            log.info(f'{Fore.GREEN}{xe.export_name}{Style.RESET_ALL} = {xe.output_value} ({xe.stack_name})')
            for xi in xe.imported_by:
                log.info(f'  imported by {Fore.GREEN}{xi}{Style.RESET_ALL}')

    def show_resources(self):
        for xr in resources.get_resources(self.o.stackname, self.ctx):
            log.info(f'{xr.stack_name}: {xr.type} {Fore.GREEN}{xr.logical_id}{Style.RESET_ALL} '
                f'{xr.resource_id} {Fore.MAGENTA}{xr.status}{Style.RESET_ALL}')
            if not self.o.properties or not xr.resource_id:
                continue
            try:
                properties = cloud_control.get_resource_properties(xr.type, xr.resource_id, self.ctx)
            except (ClientError, util.ResourceLookupFailed) as e:
                log.warning(f'  Live properties of {xr.logical_id} are not available: {e}')
                continue
            for xk, xv in sorted(properties.items()):
                log.info(f'  {xk}: {json.dumps(xv, default=str)}')

    def show_report(self):
        for xs in stack_events.get_cfn_stacks(self.ctx, self.o.stackname).values():
            util.log_section(xs.name)
            for xe in xs.get_events(self.ctx):
                log.info(f'{xe.type} at {util.rfc3339(xe.start_date)}, took {xe.duration}, '
                    f'{Fore.MAGENTA}{"success" if xe.success else "failed"}{Style.RESET_ALL}')
                for xr in xe.resource_events:
                    log.info(f'  {xr.event_type} {xr.resource.type} {Fore.GREEN}{xr.resource.logical_id}'
                        f'{Style.RESET_ALL} {xr.end_status} ({xr.duration})')

    def describe_changeset_url(self):
        stack_id, changeset_id = console_urls.parse_stack_and_changeset_from_url(self.o.url)
        log.info(f'Stack {Fore.GREEN}{stack_id}{Style.RESET_ALL}')
        log.info(f'Change set {Fore.GREEN}{changeset_id}{Style.RESET_ALL}')

    def run(self):
        commands = {
            'deploy': self.deploy_stack,
            'drift': self.detect_drift,
            'history': self.show_history,
            'exports': self.show_exports,
            'resources': self.show_resources,
            'report': self.show_report,
            'changeset-url': self.describe_changeset_url,
        }
        try:
            commands[self.o.command]()
        except Exception as e:
            log.exception(str(e), exc_info=self.o.verbose)
            log.error('Aborting')
            sys.exit(8)


def main():
    s = StackPilot()
    s.run()


if __name__ == '__main__':
    main()
