#!/usr/bin/env python

import os
import re
from setuptools import setup

version_file = os.path.join('docstore', '_version.py')
with open(version_file, 'rb') as f:
    version_data = f.read().strip().decode('ascii')

version_re = re.compile(r'((?:\d+)\.(?:\d+)\.(?:\d+))')
version = version_re.search(version_data).group(0)

install_requires = [
    'starlette',
    'uvicorn',
]

tests_require = [
    'pytest',
    'pytest-cov',
    'PyYAML',
    'httpx',
]

setup(name='docstore',
      version=version,
      description='A small document storage service with a binary-safe multipart parser',
      license='Apache',
      platforms='any',
      zip_safe=False,
      install_requires=install_requires,
      tests_require=tests_require,
      extras_require={
          'test': tests_require,
          'dev': tests_require + ['invoke', 'nox'],
      },
      packages=[
          'docstore',
      ],
      entry_points={
          'console_scripts': [
              'docstore = docstore.app:main',
          ],
      },
      python_requires='>=3.10',
      classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Web Environment',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Internet :: WWW/HTTP :: HTTP Servers',
      ],
     )
