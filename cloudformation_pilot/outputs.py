from cloudformation_pilot import util, cfn_stack

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from colorama import Fore, Style
from botocore.exceptions import ClientError

import logging

log = logging.getLogger('stack-pilot')

IMPORT_LOOKUP_WORKERS = 8


@dataclass
class CfnOutput:
    stack_name: str = ''
    output_key: str = ''
    output_value: str = ''
    description: str = ''
    export_name: str = ''
    imported: bool = False
    imported_by: List[str] = field(default_factory=list)

    def fill_imports(self, ctx: Optional[util.OperationContext] = None, client=None) -> None:
        if self.export_name == '':
            return
        ctx = ctx or util.background_context()
        c = client or util.session.client('cloudformation')
        try:
            self.imported_by = util.exhaust_pages(ctx, c.list_imports, 'Imports', ExportName=self.export_name)
        except ClientError as e:
            log.debug(f'Export {Fore.GREEN}{self.export_name}{Style.RESET_ALL} is not imported: '
                f'{util.client_error_message(e)}')
            self.imported = False
            self.imported_by = list()
            return
        self.imported = True


def get_outputs_for_stack(stack: Dict[str, Any], stack_filter: str = '', export_filter: str = '',
                          exports_only: bool = False) -> List[CfnOutput]:
    if '*' in stack_filter and not util.wildcard_regex(stack_filter).match(stack['StackName']):
        return list()
    export_re = util.wildcard_regex(export_filter) if export_filter else None
    u = list()
    for xo in stack.get('Outputs', list()):
        export_name = xo.get('ExportName', '')
        if exports_only and export_name == '':
            continue
        if export_re is not None and not export_re.match(export_name):
            continue
        u.append(CfnOutput(
            stack_name=stack['StackName'],
            output_key=xo.get('OutputKey', ''),
            output_value=xo.get('OutputValue', ''),
            description=xo.get('Description', ''),
            export_name=export_name,
        ))
    return u


def get_exports(ctx: Optional[util.OperationContext] = None, stack_name: str = '',
                export_name: str = '') -> List[CfnOutput]:
    """Lists the exports of the matching stacks together with their importers.

    Importers are looked up concurrently, one ListImports lookup per export. The
    returned list has one entry per export, in completion order.
    """
    ctx = ctx or util.background_context()
    exports = list()
    for xs in cfn_stack.describe_stacks(stack_name, ctx):
        exports.extend(get_outputs_for_stack(xs, stack_name, export_name, exports_only=True))
    if len(exports) == 0:
        return list()
    c = util.session.client('cloudformation')
    results = list()
    with ThreadPoolExecutor(max_workers=min(IMPORT_LOOKUP_WORKERS, len(exports))) as executor:
        futures = {executor.submit(xe.fill_imports, ctx, c): xe for xe in exports}
        for xf in as_completed(futures):
            xf.result()
            results.append(futures[xf])
    return results
