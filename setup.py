from setuptools import setup, find_packages

setup(
    name='scbadger',
    packages=find_packages(include=['scbadger', 'scbadger.*']),
    version='0.1.0',
    description='scBadger detects copy number changes in single cells from expression and allele counts',
    keywords=['scientific', 'single cell', 'copy number', 'cancer'],
    classifiers=[],
    install_requires=[
        'numpy',
        'scipy',
        'pandas',
        'statsmodels',
        'pyyaml',
        'joblib',
    ],
    extras_require={
        'test': ['pytest'],
    },
)
