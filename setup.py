import pathlib
from setuptools import setup
HERE = pathlib.Path(__file__).parent

_version_ns = {}
exec((HERE / 'cloudformation_pilot' / 'version.py').read_text(), _version_ns)
VERSION = _version_ns['VERSION']

README = (HERE / 'README.md').read_text()
REQS = [xr for xr in (HERE / 'requirements.txt').read_text().split('\n') if xr]

setup(
    name='cloudformation-pilot',
    version=VERSION,
    description='Deploys Cloudformation stacks through change sets and reports on their drift',
    long_description=README,
    long_description_content_type='text/markdown',
    license='MIT',
    classifiers=[
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
    ],
    packages=['cloudformation_pilot'],
    include_package_data=True,
    install_requires=REQS,
    extras_require={
        'test': ['moto[ec2,cloudformation]>=5'],
    },
    entry_points={
        'console_scripts': [
            'cloudformation-pilot=cloudformation_pilot:main',
        ]
    },
)
