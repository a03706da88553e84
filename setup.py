from setuptools import find_packages, setup

setup(
    name='subtreepublisher',
    version='0.1',
    description='Republishes monorepo subdirectories with traceable history and release tags',
    author='Iliyas Jorio',
    classifiers=[
        'Topic :: Software Development :: Version Control :: Git',
        'Environment :: Console',
        'Intended Audience :: Developers',
    ],
    packages=find_packages(include=['subtreepublisher', 'subtreepublisher.*']),
    entry_points={
        'console_scripts': ['subtreepublisher-sync-tags=subtreepublisher.__main__:main']
    },
    python_requires='>= 3.10',
    install_requires=[
        'pygit2 >= 1.15',
        'semver >= 3',
    ],
    extras_require={
        'benchmark': ['psutil'],
        'test': ['pytest'],
    },
)
