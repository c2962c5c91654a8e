#!/usr/bin/env python3
"""
Check zprs_<start>_<stop>.tsv files written by Zpr_Solver.py

Every row is re-derived with sympy alone, independent of the solver's own
generator search: the i-th row must hold the (start+i)-th prime, the listed
z-primitive roots must be exactly the primitive roots mod p that are not
primitive roots mod p^2, and the count column must match the list.
"""

import argparse
import ast
import os
import re

import sympy
from sympy.ntheory import is_primitive_root

_NAME_RE = re.compile(r"^zprs_(\d+)_(\d+)\.tsv$")


def expected_zprs(p):
    """Sorted z-primitive roots of p by brute force over [1, p-1]."""
    if p == 2:
        # 1 generates the units mod 2 but not the units mod 4
        return [1]
    p2 = p * p
    return [n for n in range(1, p)
            if is_primitive_root(n, p) and not is_primitive_root(n, p2)]


def check_zprs_row(i, p, zprs, n_zprs):
    """Check one parsed row against the i-th prime."""
    expected_p = int(sympy.prime(i))
    expected = expected_zprs(expected_p)
    is_valid = (
        p == expected_p
        and n_zprs == len(zprs)
        and len(set(zprs)) == len(zprs)
        and sorted(zprs) == expected
    )
    return {
        'i': i,
        'p': p,
        'expected_p': expected_p,
        'zprs': zprs,
        'n_zprs': n_zprs,
        'expected_zprs': expected,
        'is_valid': is_valid,
    }


def range_bounds(path):
    m = _NAME_RE.match(os.path.basename(path))
    if m is None:
        raise ValueError(f"not a zprs_<start>_<stop>.tsv file name: {path}")
    return int(m.group(1)), int(m.group(2))


def check_file(path):
    """Return (rows_checked, errors) for one TSV file.

    errors is a list of (line_num, message).  A file with fewer rows than its
    range is reported as truncated.
    """
    start, stop = range_bounds(path)
    errors = []
    checked = 0

    with open(path, 'r', encoding='utf-8') as f:
        header = f.readline()
        if header != "p\tzprs\tn_zprs\n":
            errors.append((1, f"bad header {header!r}"))
            return checked, errors

        for line_num, line in enumerate(f, 2):
            line = line.rstrip("\n")
            if not line:
                continue
            parts = line.split("\t")
            i = start + checked
            if len(parts) != 3:
                errors.append((line_num, f"Invalid format - {line!r}"))
                checked += 1
                continue
            if i >= stop:
                errors.append((line_num, f"row beyond range [{start},{stop})"))
                break

            try:
                p = int(parts[0])
                zprs = ast.literal_eval(parts[1])
                n_zprs = int(parts[2])
            except (ValueError, SyntaxError) as e:
                errors.append((line_num, f"Error parsing {line!r} - {e}"))
                checked += 1
                continue
            if not isinstance(zprs, list):
                errors.append((line_num, f"zprs column is not a list: {parts[1]!r}"))
                checked += 1
                continue

            result = check_zprs_row(i, p, zprs, n_zprs)
            checked += 1
            if not result['is_valid']:
                errors.append((line_num,
                               f"i={i} p={p} (expected {result['expected_p']}) "
                               f"zprs={zprs} n_zprs={n_zprs} expected={result['expected_zprs']}"))

    if checked < stop - start and not errors:
        errors.append((checked + 1, f"truncated: {checked} of {stop - start} rows"))
    return checked, errors


def main(argv=None):
    ap = argparse.ArgumentParser(description="Re-verify Zpr_Solver TSV output with sympy.")
    ap.add_argument("files", nargs="+", help="zprs_<start>_<stop>.tsv files")
    args = ap.parse_args(argv)

    print("Checking z-primitive root tables...")
    print("=" * 70)

    total_checked = 0
    bad_files = 0
    for path in args.files:
        checked, errors = check_file(path)
        total_checked += checked
        if errors:
            bad_files += 1
            print(f"\n❌ {path}: {len(errors)} problem(s)")
            for line_num, msg in errors:
                print(f"   line {line_num}: {msg}")
        else:
            print(f"✓ {path}: {checked} rows")

    print("\n" + "=" * 70)
    print(f"Checked {total_checked} rows in {len(args.files)} file(s)")
    if bad_files:
        print(f"\n⚠️  {bad_files} file(s) with ERRORS")
    else:
        print("\n✓ All rows match the sympy re-derivation!")

    return bad_files == 0


if __name__ == '__main__':
    success = main()
    exit(0 if success else 1)
