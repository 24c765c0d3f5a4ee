import codecs
import os
import re

from setuptools import find_packages
from setuptools import setup


def read_file(filename, encoding='utf8'):
    """Read unicode from given file."""
    with codecs.open(filename, encoding=encoding) as fd:
        return fd.read()


here = os.path.abspath(os.path.dirname(__file__))

# read version number (and other metadata) from package init
init_fn = os.path.join(here, 'src', 'vault_cert_manager', '__init__.py')
meta = dict(re.findall(r"""__([a-z]+)__ = '([^']+)""", read_file(init_fn)))

version = meta['version']

install_requires = [
    'ConfigArgParse>=1.5.3',
    'configobj>=5.0.6',
    'cryptography>=43.0.0',
    'google-auth>=2.16.0',
    'parsedatetime>=2.4',
    'prometheus_client>=0.17.0',
    'pyOpenSSL>=25.0.0',
    'pyrfc3339',
    'python-consul>=1.1.0',
    'requests>=2.20.0',
]

test_extras = [
    'pytest',
]


setup(
    name='vault-cert-manager',
    version=version,
    description='Issues, renews and synchronizes certificates from a Vault PKI backend',
    url='https://github.com/vault-cert-manager/vault-cert-manager',
    license='Apache License 2.0',
    python_requires='>=3.9',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python :: 3',
        'Topic :: Security',
        'Topic :: System :: Systems Administration',
    ],

    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    include_package_data=True,

    install_requires=install_requires,
    extras_require={
        'test': test_extras,
    },

    entry_points={
        'console_scripts': [
            'vault-cert-manager = vault_cert_manager.main:main',
        ],
    },
)
