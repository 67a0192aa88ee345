# -*- coding: utf-8 -*-
#
# This software is licensed as described in the file LICENSE, which
# you should have received as part of this distribution.
#
import os
from setuptools import setup, find_packages

here = os.path.abspath(os.path.dirname(__file__))
readme_path = os.path.join(here, 'README.md')
README = ''
if os.path.exists(readme_path):
    with open(readme_path) as f:
        README = f.read()

version = {}
with open(os.path.join(here, 'src', 'nmobfs', 'version.py')) as f:
    exec(f.read(), version)

requires = [
    'attrs>=22.2',
    'jinja2',
    'loguru',
    'munch',
    'natsort',
    'netaddr',
    'ruamel.yaml',
    'typer>=0.9',
]

test_requires = [
    'pytest',
]

setup(name='nmobfs',
      version=version['VERSION'],
      description='Mild traffic obfuscation for Netmaker interfaces on OpenVSwitch',
      long_description=README,
      long_description_content_type='text/markdown',
      classifiers=[
          "Environment :: Console",
          "Environment :: No Input/Output (Daemon)",
          "Intended Audience :: System Administrators",
          "License :: OSI Approved :: MIT License",
          "Programming Language :: Python :: 3",
          "Programming Language :: Python :: 3.9",
          "Programming Language :: Python :: 3.10",
          "Programming Language :: Python :: 3.11",
          "Programming Language :: Python :: 3.12",
          "Operating System :: POSIX :: Linux",
          "Topic :: System :: Networking",
          "Development Status :: 4 - Beta",
          "Natural Language :: English",
      ],
      keywords='netmaker openvswitch wireguard obfuscation',
      package_dir={'': 'src'},
      packages=find_packages('src'),
      include_package_data=True,
      zip_safe=False,
      python_requires='>=3.9',
      install_requires=requires,
      extras_require={'test': test_requires},
      entry_points="""\
      [console_scripts]
      nmobfs = nmobfs.cli:app
      """,
      )
