from cloudformation_pilot import util

from typing import Tuple
from urllib.parse import unquote

import re

CHANGESET_URL_FORMAT = 'https://console.aws.amazon.com/cloudformation/home?region={region}' \
    '#/stacks/changesets/changes?stackId={stack_id}&changeSetId={changeset_id}'

STACK_ID_RE = re.compile(r'[?&]stackId=([^&]*)')
CHANGESET_ID_RE = re.compile(r'[?&]changeSetId=([^&]*)')
BAD_ESCAPE_RE = re.compile(r'%(?![0-9A-Fa-f]{2})')


def generate_changeset_url(region: str, stack_id: str, changeset_id: str) -> str:
    return CHANGESET_URL_FORMAT.format(region=region, stack_id=stack_id, changeset_id=changeset_id)


def parse_stack_and_changeset_from_url(url: str) -> Tuple[str, str]:
    if not url:
        raise util.InvalidParameters('Change set URL is empty')
    if BAD_ESCAPE_RE.search(url):
        raise util.InvalidParameters(f'URL {url} contains an invalid escape sequence')
    try:
        decoded = unquote(url, errors='strict').replace('\\', '')
    except UnicodeDecodeError:
        raise util.InvalidParameters(f'URL {url} can not be decoded') from None
    stack_match = STACK_ID_RE.search(decoded)
    changeset_match = CHANGESET_ID_RE.search(decoded)
    if stack_match is None or changeset_match is None:
        raise util.InvalidParameters(f'URL {url} does not contain both stackId and changeSetId')
    stack_id, changeset_id = stack_match.group(1), changeset_match.group(1)
    if stack_id == '' or changeset_id == '':
        raise util.InvalidParameters(f'URL {url} contains an empty stackId or changeSetId')
    return stack_id, changeset_id
