"""
Setup script for the LMS enrollment triggers
"""

from setuptools import setup, find_packages


# Read README for long description
def read_readme():
    with open('README.md', 'r', encoding='utf-8') as f:
        return f.read()


# Read requirements
def read_requirements(filename='requirements.txt'):
    with open(filename, 'r') as f:
        return [line.strip() for line in f
                if line.strip() and not line.startswith('#')]


setup(
    name='lms-enrollment-triggers',
    version='1.0.0',
    description='Enrollment triggers keeping LMS course student counts and rosters consistent',
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=('tests',)),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Education',
        'Topic :: Education',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    python_requires='>=3.9',
    install_requires=read_requirements(),
    extras_require={
        'dev': read_requirements('requirements-dev.txt'),
    },
    entry_points={
        'console_scripts': [
            'enrollment-triggers=triggers.main:main',
        ],
    },
)
